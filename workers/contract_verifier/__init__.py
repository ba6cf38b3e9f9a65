"""
contract_verifier — reproducible-build verifier for on-chain wasm contracts.

Rebuild a contract from uploaded files or a pinned repository commit inside
a resource-capped container, derive the content identifier of the output
and compare it with the identifier recorded on chain.

Toolchains: tinygo (repository source), AssemblyScript (uploaded source).
"""

__version__ = "0.1.0"
VERIFIER_NAME = "contract_verifier_v1"
USER_AGENT = "VSC Blocks Contract Verifier"
