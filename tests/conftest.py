import os
import sys
from pathlib import Path

os.environ.setdefault("KEY_MANAGER_API_URL", "http://key-manager.test")
os.environ.setdefault("NEAR_RPC_URL", "http://near-rpc.test")
os.environ.setdefault("NEAR_TX_SIGNER_ID", "kampouse.near")

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))
