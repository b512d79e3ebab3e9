"""
Territory Auction CLI Commands.

Each command module exposes register_parsers(subparsers); command functions
take the parsed argparse namespace and return a JSON-serializable dict.
"""
