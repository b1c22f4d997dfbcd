# Where: chaine2e/runner/constants.py
# What: Shared constants for chain E2E sessions (ports, env keys, dev accounts).
# Why: Keep magic values in one place so nodes, deploy and exports agree.
from __future__ import annotations

CHAIN_ETHEREUM = "ethereum"
CHAIN_COSMOS = "cosmos"
CHAIN_KINDS = (CHAIN_ETHEREUM, CHAIN_COSMOS)

NODE_ANVIL = "anvil"
NODE_RETH = "reth"
NODE_WASMD = "wasmd"
NODE_UFO = "ufo"
NODE_ATTACHED = "attached"
ETHEREUM_NODES = (NODE_ANVIL, NODE_RETH)
COSMOS_NODES = (NODE_WASMD, NODE_UFO)

BUILD_MODES = ("patched", "bridged", "fauxmosis")

DEFAULT_ETH_HOST = "127.0.0.1"
DEFAULT_ETH_PORT = 8545
DEFAULT_ETH_CHAIN_ID = 31337
DEFAULT_COSMOS_RPC_PORT = 26657
DEFAULT_COSMOS_REST_PORT = 1317
DEFAULT_COSMOS_GRPC_PORT = 9090
DEFAULT_COSMOS_CHAIN_ID = "wasmd-test"
DEFAULT_COSMOS_DENOM = "ustake"
DEFAULT_UFO_BLOCK_TIME_MS = 1000
DEFAULT_UFO_VALIDATORS = 1

DEFAULT_TOOL_TIMEOUT = 120.0
DEFAULT_READY_INTERVAL = 1.0
DEFAULT_READY_TIMEOUT = 60.0
DEFAULT_TERMINATE_TIMEOUT = 5.0
DEFAULT_INDEXER_DURATION = 15 * 60.0
DEFAULT_TAIL_LINES = 40

ENV_ETH_RPC_URL = "ETH_RPC_URL"
ENV_COSMOS_RPC_URL = "COSMOS_RPC_URL"
ENV_COSMOS_REST_URL = "COSMOS_REST_URL"
ENV_DATABASE_URL = "DATABASE_URL"
ENV_ETH_CHAIN_ID = "ETH_CHAIN_ID"
ENV_COSMOS_CHAIN_ID = "COSMOS_CHAIN_ID"

EXPORT_ENV_FILE = "contract-addresses.env"
DEPLOYMENT_INFO_FILE = "deployment-info.json"
SESSION_LOG_FILE = "session.log"

# Well-known anvil dev accounts (mnemonic "test test ... junk").
ANVIL_ACCOUNTS = (
    (
        "deployer",
        "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266",
        "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80",
    ),
    (
        "account-b",
        "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
        "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d",
    ),
    (
        "account-c",
        "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC",
        "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a",
    ),
)

VALIDATOR_MNEMONIC = (
    "decorate bright ozone fork gallery riot bus exhaust worth way bone indoor "
    "calm squirrel merry zero scheme cotton until shop any excess stage laundry"
)
COSMOS_TEST_MNEMONICS = (
    ("cosmos-account-a", "enlist hip relief stomach skate base shallow young switch frequent cry park"),
    (
        "cosmos-account-b",
        "gesture inject test cycle original hollow east ridge hen combine junk child "
        "bacon zero hope comfort vacuum milk pitch cage oppose unhappy lunar seat",
    ),
)
COSMOS_GENESIS_BALANCE = "1000000000ustake,1000000000uatom"
COSMOS_GENTX_STAKE = "1000000ustake"
COSMOS_FUNDING_AMOUNT = "100000000uatom"

# Placeholder values recorded for simulated deployments.
SIMULATED_ETH_ADDRESSES = (
    "0x5FbDB2315678afecb367f032d93F642f64180aa3",
    "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512",
    "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0",
    "0xCf7Ed3AccA5a467e9e704C703E8D87F634fB0Fc9",
)
SIMULATED_COSMOS_ADDRESSES = (
    "cosmos1mock1gateway1address1valence1cosmos1rth",
    "cosmos1mock1processor1address1valence1cosmos",
    "cosmos1mock1account1address1valence1cosmos1",
)
SIMULATED_TX_HASH = "0x" + "0" * 64
