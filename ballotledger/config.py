# ballotledger/config.py
# Central place for backend selection, retry policy and store locations
import os
from enum import Enum

from dotenv import load_dotenv

load_dotenv()


class BackendMode(str, Enum):
    # Chosen once when the application is built. Nothing switches it at runtime.
    LIVE = "live"
    SIMULATED = "simulated"


BACKEND_MODE = BackendMode(os.getenv("BALLOT_BACKEND_MODE", BackendMode.SIMULATED.value).lower())

# --- Content store (MongoDB) ---
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "ballotledger")
CONTENT_COLLECTION = os.getenv("CONTENT_COLLECTION", "content")

# --- Ledger (Hyperledger Fabric peer CLI) ---
FABRIC_CHANNEL = os.getenv("FABRIC_CHANNEL", "ballotchannel")
FABRIC_CHAINCODE = os.getenv("FABRIC_CHAINCODE", "ballotledger")
FABRIC_ORDERER = os.getenv("FABRIC_ORDERER", "orderer.example.com:7050")
FABRIC_PEER = os.getenv("FABRIC_PEER", "localhost:7051")
FABRIC_ORDERER_CA = os.getenv("ORDERER_CA", "")
FABRIC_PEER_TLS_ROOT = os.getenv("PEER0_ORG1_CA", "")
# Comma separated LedgerCapability values the deployed chaincode implements
FABRIC_CAPABILITIES = os.getenv("FABRIC_CAPABILITIES", "voter_status,allow_list,election_status,voter_registry,admin_registry")
LEDGER_TIMEOUT_SECONDS = float(os.getenv("LEDGER_TIMEOUT_SECONDS", "30"))
# Owner of the simulated ledger's admin registry; empty disables the registry
LEDGER_OWNER = os.getenv("LEDGER_OWNER", "")

# --- Retry policy (3 attempts total, fixed delay between them) ---
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
RETRY_DELAY_SECONDS = float(os.getenv("RETRY_DELAY_SECONDS", "2.0"))

# --- Local cache ---
# Empty string keeps the cache in memory only
CACHE_PATH = os.getenv("CACHE_PATH", "data/local_cache.json")

# --- Security ---
SECRET_KEY = os.getenv("SECRET_KEY", "a_very_secret_key_for_dev_only")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
FERNET_KEY_FILE = os.getenv("FERNET_KEY_FILE", "data/secret.key")

# --- Status re-evaluation ---
STATUS_POLL_SECONDS = float(os.getenv("STATUS_POLL_SECONDS", "30"))

# --- HTTP ---
CORS_ORIGINS = [
    "http://localhost:3000",  # Create React App
    "http://localhost:5173",  # Vite
]
