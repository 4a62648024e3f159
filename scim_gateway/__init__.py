"""SCIM 2.0 gateway over a dynamically configured IDM backend.

To build the Flask app:
    from scim_gateway.flask_app import create_app

To use the schema/filter core without Flask:
    from scim_gateway.core.schema_cache import SchemaCache
    from scim_gateway.core.filter_translator import translate
"""
# flask_app is not imported here so scripts can use scim_gateway.core
# without pulling in Flask.
