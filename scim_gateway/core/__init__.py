"""Core Logic Module

Schema compilation, schema caching and filter translation, independent of
the HTTP framework.

Module Structure:
    - idm/                 : IDM REST client, config reads, managed-object queries
    - schema_types.py      : SCIM schema model and backend type classification
    - schema_compiler.py   : IDM property definitions → SCIM SchemaDocument
    - schema_cache.py      : snapshot cache with single-writer refresh
    - attribute_mappings.py: custom attribute mappings and filter rewrite tables
    - filter_translator.py : SCIM filter → IDM _queryFilter
    - scim_transformer.py  : IDM objects → SCIM resources
    - scim_service.py      : list/get path used by the SCIM API (ScimError)

Usage Pattern:
    Nothing is auto-imported so the CLI can use the core without Flask:
        from scim_gateway.core.filter_translator import translate
        from scim_gateway.core.schema_cache import SchemaCache
"""
