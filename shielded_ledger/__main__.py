import argparse

from shielded_ledger.config import Config
from shielded_ledger.keys import SIGNATURE_MESSAGE, UserKeys

if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Shielded ledger account tools",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=str, help="Configuration file path")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("message", help="Print the message the wallet must sign")

    keys_parser = subparsers.add_parser(
        "keys", help="Derive the zk address for a wallet signature"
    )
    keys_parser.add_argument(
        "signature", type=str, help="65 byte signature over the message, hex encoded"
    )
    args = parser.parse_args()

    config = Config.load(args.config) if args.config else Config.default()
    config.logging.apply()

    match args.command:
        case "message":
            print(SIGNATURE_MESSAGE)
        case "keys":
            keys = UserKeys.from_signature(args.signature)
            print(keys.zk_address)
