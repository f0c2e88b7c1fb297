"""Copy every stored collection from one storage backend to another.

Usage:
    python -m capacita.copy_collections --source file --target database
"""
import argparse
import sys
from dataclasses import replace

from capacita.core.config import STORAGE_BACKENDS, configure_logging, load_settings
from capacita.storage import COLLECTIONS, CollectionStore, build_store


def copy_collections(source: CollectionStore, target: CollectionStore) -> dict[str, int | None]:
    """Return the number of records copied per collection, ``None`` where the write failed."""
    target.initialize()
    results: dict[str, int | None] = {}
    for name in COLLECTIONS:
        records = source.load(name)
        results[name] = len(records) if target.write(name, records) else None
    return results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--source", choices=sorted(STORAGE_BACKENDS), required=True)
    parser.add_argument("--target", choices=sorted(STORAGE_BACKENDS), required=True)
    args = parser.parse_args(argv)

    if args.source == args.target:
        print("Source and target backends must differ.", file=sys.stderr)
        return 1

    settings = load_settings()
    configure_logging(settings.log_level)
    source = build_store(replace(settings, storage_backend=args.source))
    target = build_store(replace(settings, storage_backend=args.target))

    failed = False
    for name, count in copy_collections(source, target).items():
        if count is None:
            print(f"{name}: write failed", file=sys.stderr)
            failed = True
        else:
            print(f"{name}: {count} records")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
