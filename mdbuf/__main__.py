"""Run the mdbuf JSON-RPC worker: python -m mdbuf"""

from mdbuf.rpc_server.server import run

if __name__ == "__main__":
    run()
