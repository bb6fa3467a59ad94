"""
dvschema - Dataverse schema provisioning

Reads table/column definitions from spreadsheets, reports which already
exist in Dataverse, and creates the missing ones behind an explicit
confirmation.
"""

__version__ = "0.1.0"


__all__ = ["DvSchemaConfig", "load_config", "get_dvschema_home", "SchemaRecord", "TypeOptions"]

from .config import DvSchemaConfig, load_config, get_dvschema_home
from .models import SchemaRecord, TypeOptions
