"""
Run the dietitian chat CLI.

Usage:
    python run_cli.py [COMMAND] [OPTIONS]

Commands:
    init-db       Create the database schema
    open          Open (or reuse) a chat with a counterpart
    send          Send a message into a chat
    history       Show a chat transcript
    watch         Follow a chat live
    inbox         List your chats
    accept        Accept a waiting chat (dietitian)
    close         Close a chat (dietitian)
    plan          Suggest a nutrition plan from a JSON file (dietitian)
    repair        Recompute a chat's unread counters
    availability  Show or set a dietitian's availability
    token         Mint a development JWT

Examples:
    python run_cli.py open diet-1 "Hi, I need help" --user client-1
    python run_cli.py accept <chat-id> --user diet-1 --role dietitian
    python run_cli.py availability diet-1 busy

Environment variables: see run_api.py.
"""

import sys
from pathlib import Path

# Ensure src/ is importable
sys.path.insert(0, str(Path(__file__).parent / "src"))

from adapters.cli.main import app

if __name__ == "__main__":
    app()
