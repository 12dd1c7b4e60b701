#!/usr/bin/env python3
"""
Fieldproof Command Line Interface

Usage:
    fieldproof identity init|show|export|import
    fieldproof nullifier [--date YYYY-MM-DD]
    fieldproof report --observation <file> --photo <file>
    fieldproof pack --reports <file> --photos <dir> --output <zip>
    fieldproof verify <zip> [--expected-hash <hash>]
    fieldproof hash <file>
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def emit_json(data, output: Optional[str] = None):
    if output:
        save_json(data, output)
        print(f"Saved to: {output}", file=sys.stderr)
    else:
        print(json.dumps(data, indent=2))


def _manager(args):
    from fieldproof import IdentityManager, config

    return IdentityManager(config.get_identity_store(args.identity))


def cmd_identity(args):
    """Manage the local identity."""
    from fieldproof.exceptions import IdentityError

    manager = _manager(args)
    action = args.action

    if action == "init":
        identity = manager.create_or_load()
        print(json.dumps(identity.public_view(), indent=2))
        return 0

    if action == "show":
        identity = manager.current()
        if identity is None:
            print("No identity yet. Run: fieldproof identity init", file=sys.stderr)
            return 1
        print(json.dumps(identity.public_view(), indent=2))
        return 0

    if action == "export":
        try:
            bundle = manager.export_bundle()
        except IdentityError as e:
            print(f"✗ {e}", file=sys.stderr)
            return 1
        if args.file:
            Path(args.file).write_bytes(bundle)
            print(f"Identity bundle saved to: {args.file}", file=sys.stderr)
            print("Keep it private: it holds the signing key and recovery secret.", file=sys.stderr)
        else:
            sys.stdout.write(bundle.decode('utf-8') + "\n")
        return 0

    if action == "import":
        if not args.file:
            print("import needs a bundle file", file=sys.stderr)
            return 2
        try:
            identity = manager.import_bundle(Path(args.file).read_bytes())
        except IdentityError as e:
            print(f"✗ Import failed: {e}", file=sys.stderr)
            return 1
        print(f"✓ Imported identity {identity.anon_id}")
        return 0

    return 2


def cmd_nullifier(args):
    """Print today's (or a given day's) nullifier."""
    manager = _manager(args)
    print(manager.nullifier(args.date))
    return 0


def cmd_report(args):
    """Assemble and sign a report from an observation and a photo."""
    from fieldproof import Observation, assemble_report
    from fieldproof.exceptions import MalformedInputError

    manager = _manager(args)
    identity = manager.create_or_load()

    try:
        report = assemble_report(
            Observation.from_dict(load_json(args.observation)),
            Path(args.photo).read_bytes(),
            identity,
            img_mime=args.mime,
            report_id=args.id,
        )
    except MalformedInputError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    emit_json(report.to_dict(), args.output)
    return 0


def _photo_dir_lookup(directory: Path):
    def lookup(report_id: str):
        for candidate in sorted(directory.glob(f"{report_id}.*")):
            if candidate.is_file():
                return candidate.read_bytes()
        plain = directory / report_id
        return plain.read_bytes() if plain.is_file() else None
    return lookup


def cmd_pack(args):
    """Bundle signed reports and their photos into an archive."""
    from fieldproof import build_pack, config
    from fieldproof.exceptions import MalformedInputError

    reports = load_json(args.reports)
    if isinstance(reports, dict):
        reports = reports["reports"] if "reports" in reports else [reports]

    signer = None
    uploader_id = args.uploader_id
    if args.sign or not uploader_id:
        identity = _manager(args).create_or_load()
        uploader_id = uploader_id or identity.anon_id
        if args.sign:
            signer = identity

    try:
        built = build_pack(
            reports,
            _photo_dir_lookup(Path(args.photos)),
            channel=args.channel or config.DEFAULT_CHANNEL,
            uploader_id=uploader_id,
            signer=signer,
        )
    except MalformedInputError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    Path(args.output).write_bytes(built.archive)
    print(f"pack_hash: {built.pack_hash}")
    print(f"Archive saved to: {args.output} ({built.report_count} reports)", file=sys.stderr)
    return 0


def cmd_verify(args):
    """Verify every report in an archive."""
    from fieldproof import PackVerifier, PublicKeyCache, config
    from fieldproof.exceptions import PackFormatError

    archive = Path(args.archive).read_bytes()
    ledger = config.get_dedup_ledger(args.ledger)
    verifier = PackVerifier(PublicKeyCache(), ledger=ledger, max_workers=args.workers)

    try:
        result = verifier.verify(archive, expected_hash=args.expected_hash)
    except PackFormatError as e:
        print(f"✗ INVALID ARCHIVE: {e}", file=sys.stderr)
        return 2
    finally:
        if hasattr(ledger, "close"):
            ledger.close()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"pack_hash: {result.pack_hash}")
        for warning in result.warnings:
            print(f"! {warning}")
        for item in result.results:
            mark = "✓" if item.accepted else "✗"
            reasons = ", ".join(r.value for r in item.reasons)
            print(f"  {mark} {item.report_id}  sig={'ok' if item.ok_sig else 'BAD'} "
                  f"img={'ok' if item.ok_img else 'BAD'} dup={'yes' if item.duplicate else 'no'}"
                  + (f"  [{reasons}]" if reasons else ""))
        print(f"\n{len(result.accepted)}/{result.total} accepted, {result.duplicates} duplicates")

    return 1 if result.rejected else 0


def cmd_hash(args):
    """Compute the archive hash of a file."""
    from fieldproof.hashing import archive_hash

    print(archive_hash(Path(args.file).read_bytes()))
    return 0


def build_parser() -> argparse.ArgumentParser:
    from fieldproof import config

    parser = argparse.ArgumentParser(
        prog="fieldproof",
        description="Signed geotagged field reports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fieldproof identity init
  fieldproof report -O obs.json -p photo.jpg -o report.json
  fieldproof pack -r reports.json -P photos/ -o pack.zip
  fieldproof verify pack.zip
  fieldproof hash pack.zip
        """
    )
    parser.add_argument("--identity", help=f"Identity file (default: {config.IDENTITY_PATH})")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Log level")
    parser.add_argument(
        "--log-json",
        action=argparse.BooleanOptionalAction,
        default=config.LOG_JSON,
        help="Structured JSON logs (default from FIELDPROOF_LOG_JSON)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # identity
    identity_parser = subparsers.add_parser("identity", help="Manage the local identity")
    identity_parser.add_argument("action", choices=["init", "show", "export", "import"])
    identity_parser.add_argument("file", nargs="?", help="Bundle file for export/import")

    # nullifier
    nullifier_parser = subparsers.add_parser("nullifier", help="Daily nullifier")
    nullifier_parser.add_argument("-d", "--date", help="Day as YYYY-MM-DD (default: today, UTC)")

    # report
    report_parser = subparsers.add_parser("report", help="Assemble a signed report")
    report_parser.add_argument("-O", "--observation", required=True, help="Observation JSON file")
    report_parser.add_argument("-p", "--photo", required=True, help="Photo file")
    report_parser.add_argument("-m", "--mime", default="image/jpeg", help="Photo MIME type")
    report_parser.add_argument("--id", help="Report id (default: generated)")
    report_parser.add_argument("-o", "--output", help="Output file for the report")

    # pack
    pack_parser = subparsers.add_parser("pack", help="Build a pack archive")
    pack_parser.add_argument("-r", "--reports", required=True, help="Reports JSON file (list)")
    pack_parser.add_argument("-P", "--photos", required=True, help="Directory of <report id>.<ext> photos")
    pack_parser.add_argument("-c", "--channel", help="Channel label")
    pack_parser.add_argument("-u", "--uploader-id", help="Uploader pseudonym (default: identity anonId)")
    pack_parser.add_argument("-s", "--sign", action="store_true", help="Sign the manifest")
    pack_parser.add_argument("-o", "--output", required=True, help="Output ZIP file")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify a pack archive")
    verify_parser.add_argument("archive", help="ZIP file")
    verify_parser.add_argument("-e", "--expected-hash", help="Claimed archive hash")
    verify_parser.add_argument("-l", "--ledger", help="SQLite dedup ledger (default: in-memory)")
    verify_parser.add_argument("-w", "--workers", type=int, default=config.VERIFY_WORKERS,
                               help="Parallel report checks")
    verify_parser.add_argument("--json", action="store_true", help="JSON output")

    # hash
    hash_parser = subparsers.add_parser("hash", help="Archive hash of a file")
    hash_parser.add_argument("file", help="File to hash")

    return parser


COMMANDS = {
    "identity": cmd_identity,
    "nullifier": cmd_nullifier,
    "report": cmd_report,
    "pack": cmd_pack,
    "verify": cmd_verify,
    "hash": cmd_hash,
}


def main(argv=None) -> int:
    from fieldproof.logging_config import configure_logging

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return 2

    configure_logging(level=args.log_level, json_format=args.log_json)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
