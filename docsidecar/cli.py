"""CLI entrypoint: encode an editor tree to a Markdown/sidecar pair and decode it back."""
import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from docsidecar.config import load_config
from docsidecar.serialization import Deserializer, Serializer
from docsidecar.storage import DirectoryImageStore, read_pair, write_pair

logger = logging.getLogger("docsidecar.cli")


async def _encode(args: argparse.Namespace) -> int:
    config = load_config(args.config_path)
    with open(args.tree_path, "r", encoding="utf-8") as f:
        tree = json.load(f)

    store = DirectoryImageStore(args.images_dir) if args.images_dir else None
    serializer = Serializer(store_image=store.store if store else None, config=config.converter)

    name = args.name or os.path.splitext(os.path.basename(args.tree_path))[0]
    base_path = os.path.join(args.out_dir, name)
    base = None
    if os.path.exists(base_path + ".md"):
        _, base = read_pair(base_path + ".md")

    result = await serializer.serialize(tree, base=base)
    md_path, sidecar_path = write_pair(result.markdown, result.sidecar, base_path)
    logger.info("Wrote %s and %s", md_path, sidecar_path)
    return 0


async def _decode(args: argparse.Namespace) -> int:
    markdown, sidecar = read_pair(args.markdown_path, args.sidecar_path)
    if sidecar is None:
        logger.info("No sidecar next to %s; decoding without formatting", args.markdown_path)

    config = load_config(args.config_path)
    store = DirectoryImageStore(args.images_dir) if args.images_dir else None
    deserializer = Deserializer(load_image=store.load if store else None, config=config.converter)
    document = await deserializer.deserialize(markdown, sidecar)

    payload = json.dumps(document.to_wire(), ensure_ascii=False, indent=2)
    if args.out_path:
        directory = os.path.dirname(args.out_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(args.out_path, "w", encoding="utf-8") as f:
            f.write(payload)
            f.write("\n")
        logger.info("Wrote %s", args.out_path)
    else:
        print(payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsidecar",
        description="Convert editor documents to Markdown plus a formatting sidecar, and back.",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=os.environ.get("DOCSIDECAR_CONFIG"),
        help="Path to YAML config",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=os.environ.get("DOCSIDECAR_LOG_LEVEL"),
        help="Logging level (overrides the config file)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- encode ---
    p_encode = subparsers.add_parser("encode", help="Editor tree JSON -> <name>.md + <name>.sidecar.json")
    p_encode.add_argument("tree_path", help="Path to the editor tree JSON")
    p_encode.add_argument("--out", dest="out_dir", default="out", help="Output directory")
    p_encode.add_argument("--name", default=None, help="Base file name (defaults to the tree file name)")
    p_encode.add_argument("--images", dest="images_dir", default=None, help="Directory for extracted images")
    p_encode.set_defaults(func=_encode)

    # --- decode ---
    p_decode = subparsers.add_parser("decode", help="Markdown body (+ sidecar) -> editor tree JSON")
    p_decode.add_argument("markdown_path", help="Path to the Markdown body")
    p_decode.add_argument("--sidecar", dest="sidecar_path", default=None, help="Sidecar path (defaults to the sibling file)")
    p_decode.add_argument("--images", dest="images_dir", default=None, help="Directory holding stored images")
    p_decode.add_argument("--out", dest="out_path", default=None, help="Write the tree here instead of stdout")
    p_decode.set_defaults(func=_decode)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    level = args.log_level or load_config(args.config_path).logging.level
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    return asyncio.run(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
