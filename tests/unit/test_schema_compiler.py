"""Tests for compiling IDM property definitions into SCIM schemas."""
import pytest

from scim_gateway.core import schema_urns
from scim_gateway.core.attribute_mappings import CustomAttributeMapping, CustomAttributeMappingConfig
from scim_gateway.core.schema_compiler import (
    ResourceKind,
    compile_all,
    compile_extension_schema,
    compile_schema,
    core_group_attributes,
    core_user_attributes,
    custom_attribute,
)
from scim_gateway.core.schema_types import Returned, ScimType

from tests.conftest import ROLE_PROPERTIES, USER_PROPERTIES


def _mapping(scim_path, idm_attribute, schema=schema_urns.ENTERPRISE_USER, **kwargs):
    return CustomAttributeMapping(scim_path=scim_path, scim_schema=schema, idm_attribute=idm_attribute, **kwargs)


def test_core_user_attribute_set():
    names = [attribute.name for attribute in core_user_attributes()]
    assert names[:3] == ["id", "userName", "name"]
    assert names[-1] == "meta"
    for expected in ("displayName", "emails", "phoneNumbers", "active", "password",
                     "title", "preferredLanguage", "locale", "timezone", "profileUrl"):
        assert expected in names


def test_core_group_attribute_set():
    names = [attribute.name for attribute in core_group_attributes()]
    assert names == ["id", "displayName", "members", "description", "meta"]


def test_compile_user_schema_without_properties():
    document = compile_schema(ResourceKind.USER, None)
    assert document.id == schema_urns.CORE_USER
    assert document.name == "User"
    assert document.description == "User Account"
    assert document.attribute_names == tuple(attribute.name for attribute in core_user_attributes())


def test_compile_user_schema_adds_custom_properties():
    document = compile_schema("user", USER_PROPERTIES)
    names = document.attribute_names

    assert "costCenter" in names
    assert "isContractor" in names
    assert "loginCount" in names
    assert "tags" in names
    # Internal, underscore and core-mapped properties are not exposed again
    assert "_id" not in names
    assert "effectiveRoles" not in names
    assert "givenName" not in names
    assert "mail" not in names
    assert names.count("userName") == 1


def test_custom_attribute_types_follow_backend_types():
    document = compile_schema(ResourceKind.USER, USER_PROPERTIES)
    assert document.attribute("isContractor").type is ScimType.BOOLEAN
    assert document.attribute("loginCount").type is ScimType.INTEGER
    tags = document.attribute("tags")
    assert tags.type is ScimType.STRING
    assert tags.multi_valued is True


def test_custom_attribute_description_comes_only_from_description():
    document = compile_schema(ResourceKind.USER, USER_PROPERTIES)
    assert document.attribute("costCenter").description == "Cost center code"
    assert document.attribute("isContractor").description is None
    assert document.attribute("loginCount").description is None


def test_non_viewable_property_is_never_returned():
    attribute = custom_attribute("secretAnswer", {"type": "string", "viewable": False})
    assert attribute.returned is Returned.NEVER
    assert custom_attribute("x", {"type": "string"}).returned is Returned.DEFAULT


def test_non_object_property_definitions_are_skipped():
    document = compile_schema(ResourceKind.USER, {"weird": "string", "ok": {"type": "string"}})
    assert "weird" not in document.attribute_names
    assert "ok" in document.attribute_names


def test_compile_group_schema():
    document = compile_schema(ResourceKind.GROUP, ROLE_PROPERTIES)
    assert document.id == schema_urns.CORE_GROUP
    assert document.attribute("roleOwner").type is ScimType.REFERENCE
    assert document.attribute_names.count("members") == 1
    assert document.attribute_names.count("description") == 1


def test_compile_is_deterministic():
    assert compile_schema(ResourceKind.USER, USER_PROPERTIES) == compile_schema(ResourceKind.USER, USER_PROPERTIES)


def test_compile_with_empty_properties_is_exactly_the_core_set():
    for kind, core in ((ResourceKind.USER, core_user_attributes()), (ResourceKind.GROUP, core_group_attributes())):
        document = compile_schema(kind, {})
        assert document.attributes == core
        assert compile_schema(kind, {}) == document


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        compile_schema("device", {})


def test_core_user_mappings_merge_top_level_and_nested():
    config = CustomAttributeMappingConfig([
        _mapping("nickName", "frIndexedString2", schema=schema_urns.CORE_USER),
        _mapping("name.phoneticName", "frIndexedString3", schema=schema_urns.CORE_USER),
        _mapping("userName", "userName", schema=schema_urns.CORE_USER),
    ])
    document = compile_schema(ResourceKind.USER, None, config)

    assert document.attribute("nickName").description == "Custom mapped attribute from IDM: frIndexedString2"
    assert document.attribute("name").sub_attribute("phoneticName") is not None
    assert document.attribute_names.count("userName") == 1


def test_nested_mapping_with_missing_or_simple_parent_is_skipped():
    config = CustomAttributeMappingConfig([
        _mapping("missing.child", "a", schema=schema_urns.CORE_USER),
        _mapping("userName.child", "b", schema=schema_urns.CORE_USER),
    ])
    document = compile_schema(ResourceKind.USER, None, config)
    assert document.attribute("userName").sub_attributes == ()
    assert "missing" not in document.attribute_names


def test_extension_schema_absent_without_enterprise_mappings():
    assert compile_extension_schema(None) is None
    assert compile_extension_schema(CustomAttributeMappingConfig()) is None


def test_extension_schema_from_enterprise_mappings():
    config = CustomAttributeMappingConfig([
        _mapping("employeeNumber", "frIndexedString1"),
        _mapping("manager", "frIndexedString4", type="complex"),
        _mapping("manager.displayName", "frIndexedString5"),
    ])
    document = compile_extension_schema(config)
    assert document.id == schema_urns.ENTERPRISE_USER
    assert document.name == "EnterpriseUser"
    assert document.description == "Enterprise User Extension"
    assert document.attribute_names == ("employeeNumber", "manager")
    assert document.attribute("manager").sub_attribute("displayName") is not None


def test_extension_creates_complex_parent_for_dotted_mapping():
    config = CustomAttributeMappingConfig([_mapping("manager.value", "managerId")])
    document = compile_extension_schema(config)
    assert document is not None
    manager = document.attribute("manager")
    assert manager.type is ScimType.COMPLEX
    assert [sub.name for sub in manager.sub_attributes] == ["value"]


def test_extension_skips_dotted_mapping_with_multi_level_parent():
    config = CustomAttributeMappingConfig([
        _mapping("employeeNumber", "frIndexedString1"),
        _mapping("manager.ref.value", "managerId"),
    ])
    document = compile_extension_schema(config)
    assert document.attribute_names == ("employeeNumber",)


def test_enterprise_mappings_do_not_leak_into_core_user():
    config = CustomAttributeMappingConfig([_mapping("employeeNumber", "frIndexedString1")])
    document = compile_schema(ResourceKind.USER, None, config)
    assert "employeeNumber" not in document.attribute_names


def test_compile_all_keys_and_order():
    config = CustomAttributeMappingConfig([_mapping("employeeNumber", "frIndexedString1")])
    documents = compile_all({ResourceKind.USER: USER_PROPERTIES, ResourceKind.GROUP: ROLE_PROPERTIES}, config)
    assert list(documents) == ["User", "EnterpriseUser", "Group"]

    documents = compile_all({ResourceKind.USER: None, ResourceKind.GROUP: None})
    assert list(documents) == ["User", "Group"]
