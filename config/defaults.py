"""
Default configuration values for flowsrc-sync.

Centralized defaults that can be overridden by environment variables or the config file.
"""

from typing import Any, Dict

DEFAULT_CONFIG_FILENAME = "flowsrc.json"

# Source tree folder used when the config file does not name one
DEFAULT_SOURCE_DIRNAME = "src"

# Global default settings
DEFAULT_SETTINGS = {
    # Node-RED connection
    "node_red": {
        "url": "http://localhost:1880",
        "bearer_token": None,
        "allow_self_signed_certificates": False
    },

    # Source tree
    "source": {
        "clean_on_start": False,
        "file_change_delay_ms": 1000,
        "backup_flows": True
    }
}

# Environment variable -> config file key
ENV_VAR_MAPPING = {
    'FLOWSRC_NODE_RED_URL': 'node_red_url',
    'FLOWSRC_BEARER_TOKEN': 'bearer_token',
    'FLOWSRC_ALLOW_SELF_SIGNED_CERTIFICATES': 'allow_self_signed_certificates',
    'FLOWSRC_SOURCE_PATH': 'source_path',
    'FLOWSRC_CLEAN_ON_START': 'clean_on_start',
    'FLOWSRC_FILE_CHANGE_DELAY_MS': 'file_change_delay_ms',
    'FLOWSRC_BACKUP_FLOWS': 'backup_flows',
    'FLOWSRC_RECONNECT_BASE_DELAY_S': 'reconnect_base_delay_s',
    'FLOWSRC_RECONNECT_MAX_DELAY_S': 'reconnect_max_delay_s'
}

# Keys whose values must stay strings even if they look like numbers or booleans
STRING_CONFIG_KEYS = frozenset({'node_red_url', 'bearer_token', 'source_path'})


def get_default_config(node_red_url: str = DEFAULT_SETTINGS["node_red"]["url"]) -> Dict[str, Any]:
    """Get the starter config file content"""
    return {
        'node_red_url': node_red_url,
        'bearer_token': DEFAULT_SETTINGS['node_red']['bearer_token'],
        'allow_self_signed_certificates': DEFAULT_SETTINGS['node_red']['allow_self_signed_certificates'],
        'source_path': f"./{DEFAULT_SOURCE_DIRNAME}",
        'clean_on_start': DEFAULT_SETTINGS['source']['clean_on_start'],
        'file_change_delay_ms': DEFAULT_SETTINGS['source']['file_change_delay_ms'],
        'backup_flows': DEFAULT_SETTINGS['source']['backup_flows']
    }
