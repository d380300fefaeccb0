"""
TenrxChat Configuration
"""
import os
import json
from pathlib import Path

# Project root
BASE_DIR = Path(__file__).resolve().parent.parent

config_data = {}
_config_file = Path(os.getenv("TENRX_CONFIG_FILE", BASE_DIR / "data" / "config.json"))
if _config_file.exists():
    try:
        with open(_config_file, "r", encoding="utf-8") as _f:
            config_data = json.load(_f)
    except (OSError, json.JSONDecodeError):
        config_data = {}

# REST backend used by the questionnaire bot
API_BASE_URL = os.getenv("TENRX_API_URL", config_data.get("API_BASE_URL", "https://api.tenrx.io"))
API_TIMEOUT = float(os.getenv("TENRX_API_TIMEOUT", config_data.get("API_TIMEOUT", "30")))
BUSINESS_TOKEN = os.getenv("TENRX_BUSINESS_TOKEN", config_data.get("BUSINESS_TOKEN", ""))

# Live chat socket endpoint
CHAT_SOCKET_URL = os.getenv("TENRX_CHAT_URL", config_data.get("CHAT_SOCKET_URL", "ws://127.0.0.1:8080/chat"))

# Packet acknowledgement: seconds to wait for a REPLY before resending,
# and how many resends follow the first attempt.
PACKET_RETRY_TIMEOUT = float(os.getenv("TENRX_PACKET_RETRY_TIMEOUT", config_data.get("PACKET_RETRY_TIMEOUT", "5")))
PACKET_MAX_RETRIES = int(os.getenv("TENRX_PACKET_MAX_RETRIES", config_data.get("PACKET_MAX_RETRIES", "2")))

# ALIVE packet interval (seconds) while the socket is connected
KEEPALIVE_INTERVAL = float(os.getenv("TENRX_KEEPALIVE_INTERVAL", config_data.get("KEEPALIVE_INTERVAL", "15")))

# Transport reconnect backoff (seconds)
RECONNECT_DELAY = float(os.getenv("TENRX_RECONNECT_DELAY", config_data.get("RECONNECT_DELAY", "1")))
RECONNECT_MAX_DELAY = float(os.getenv("TENRX_RECONNECT_MAX_DELAY", config_data.get("RECONNECT_MAX_DELAY", "30")))

# Questionnaire bot: pause between "typing" and the actual message (0 = send immediately)
BOT_TYPING_DELAY = float(os.getenv("TENRX_BOT_TYPING_DELAY", config_data.get("BOT_TYPING_DELAY", "1.0")))

LOG_LEVEL = os.getenv("TENRX_LOG_LEVEL", config_data.get("LOG_LEVEL", "INFO")).upper()
CHAT_VERSION = "0.1.0"


def get_config_dict():
    return {
        "API_BASE_URL": API_BASE_URL,
        "API_TIMEOUT": API_TIMEOUT,
        "BUSINESS_TOKEN": "***" if BUSINESS_TOKEN else "",
        "CHAT_SOCKET_URL": CHAT_SOCKET_URL,
        "PACKET_RETRY_TIMEOUT": PACKET_RETRY_TIMEOUT,
        "PACKET_MAX_RETRIES": PACKET_MAX_RETRIES,
        "KEEPALIVE_INTERVAL": KEEPALIVE_INTERVAL,
        "RECONNECT_DELAY": RECONNECT_DELAY,
        "RECONNECT_MAX_DELAY": RECONNECT_MAX_DELAY,
        "BOT_TYPING_DELAY": BOT_TYPING_DELAY,
        "LOG_LEVEL": LOG_LEVEL,
    }
