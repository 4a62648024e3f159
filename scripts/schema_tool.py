"""Command-line helpers for the SCIM gateway schema and filter pipeline.

    translate   SCIM filter -> IDM _queryFilter
    compile     Compile schemas from a saved managed-config document
    fetch       Compile schemas from a live IDM instance

Examples:
    python scripts/schema_tool.py translate 'name.familyName co "Smith" and active eq true'
    python scripts/schema_tool.py compile managed.json --mappings mappings.yaml
    python scripts/schema_tool.py fetch --idm-url http://localhost:8080 --token "$TOKEN"
"""
from __future__ import annotations
import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from scim_gateway.core import schema_urns
from scim_gateway.core.attribute_mappings import (
    CustomAttributeMappingConfig,
    MappingConfigError,
    build_filter_rewrite_table,
)
from scim_gateway.core.filter_translator import FilterTranslationError, translate
from scim_gateway.core.idm import IdmAPIError, IdmClient, IdmConfigService
from scim_gateway.core.schema_cache import SchemaCache, SchemaRefreshError
from scim_gateway.core.schema_compiler import ResourceKind


class DocumentConfigSource:
    """Serves managed-object configuration from an already-loaded document."""

    def __init__(self, document: Dict[str, Any]):
        self.document = document

    def get_managed_object_config(self, object_name: str) -> Optional[Dict[str, Any]]:
        for entry in self.document.get("objects") or []:
            if isinstance(entry, dict) and entry.get("name") == object_name:
                return entry
        return None

    get_properties_definition = staticmethod(IdmConfigService.get_properties_definition)


def _read_document(path: str) -> Any:
    file_path = Path(path)
    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)


def _load_mappings(path: Optional[str]) -> CustomAttributeMappingConfig:
    if path:
        return CustomAttributeMappingConfig.from_file(path)
    return CustomAttributeMappingConfig.load()


def _managed_objects(args) -> Dict[ResourceKind, str]:
    return {ResourceKind.USER: args.user_object, ResourceKind.GROUP: args.role_object}


def _print_schemas(cache: SchemaCache, base_url: str) -> None:
    documents = [document.to_dict(base_url) for document in cache.get_all_schemas()]
    print(json.dumps(documents, indent=2))


def cmd_translate(args) -> int:
    mappings = _load_mappings(args.mappings)
    table = build_filter_rewrite_table(args.resource, mappings)
    try:
        print(translate(args.filter, table))
    except FilterTranslationError as e:
        print(f"[translate] Error: {e}", file=sys.stderr)
        return 1
    return 0


def cmd_compile(args) -> int:
    try:
        document = _read_document(args.managed_config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"[compile] Error: cannot read {args.managed_config}: {e}", file=sys.stderr)
        return 1
    if not isinstance(document, dict):
        print("[compile] Error: managed config must be an object with an 'objects' array", file=sys.stderr)
        return 1

    cache = SchemaCache(DocumentConfigSource(document), _managed_objects(args), _load_mappings(args.mappings))
    cache.rebuild()
    _print_schemas(cache, args.base_url)
    return 0


def cmd_fetch(args) -> int:
    if not args.token:
        print("[fetch] Error: --token (or IDM_TOKEN) is required", file=sys.stderr)
        return 1

    client = IdmClient(args.idm_url)
    client.set_static_token(args.token)
    cache = SchemaCache(IdmConfigService(client), _managed_objects(args), _load_mappings(args.mappings))
    try:
        cache.rebuild()
    except SchemaRefreshError as e:
        print(f"[fetch] Error: {e}", file=sys.stderr)
        return 1
    _print_schemas(cache, args.base_url)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SCIM gateway schema and filter helper")
    parser.add_argument("--mappings", default=None,
                        help="Custom attribute mapping file (JSON or YAML); defaults to the environment")
    sub = parser.add_subparsers(dest="cmd")

    st = sub.add_parser("translate", help="Translate a SCIM filter to an IDM _queryFilter")
    st.add_argument("filter")
    st.add_argument("--resource", choices=[schema_urns.USER_RESOURCE, schema_urns.GROUP_RESOURCE],
                    default=schema_urns.USER_RESOURCE)

    for name, help_text in (("compile", "Compile schemas from a saved managed config"),
                            ("fetch", "Compile schemas from a live IDM")):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("--user-object", default=os.environ.get("IDM_MANAGED_USER_OBJECT", "alpha_user"))
        sp.add_argument("--role-object", default=os.environ.get("IDM_MANAGED_ROLE_OBJECT", "alpha_role"))
        sp.add_argument("--base-url", default=os.environ.get("SCIM_SERVER_BASE_URL", "/scim/v2"))
        if name == "compile":
            sp.add_argument("managed_config", help="Path to a /openidm/config/managed document")
        else:
            sp.add_argument("--idm-url", default=os.environ.get("IDM_BASE_URL", "http://localhost:8080"))
            sp.add_argument("--token", default=os.environ.get("IDM_TOKEN"))
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 0

    try:
        if args.cmd == "translate":
            return cmd_translate(args)
        if args.cmd == "compile":
            return cmd_compile(args)
        return cmd_fetch(args)
    except MappingConfigError as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        return 1
    except IdmAPIError as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
