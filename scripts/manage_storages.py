#!/usr/bin/env python3
"""
Manage storage configurations from the command line.

Useful for bootstrapping a deployment before anyone can log in to the
UI, and for maintenance the UI doesn't offer (schema creation,
encrypting secrets that were stored before a key was configured).

Usage:
    python scripts/manage_storages.py init-schema
    python scripts/manage_storages.py list
    python scripts/manage_storages.py add --name R2 --endpoint https://<account>.r2.cloudflarestorage.com \\
        --bucket media --access-key-id ... --secret-access-key ... --public
    python scripts/manage_storages.py remove 3
    python scripts/manage_storages.py generate-key
    python scripts/manage_storages.py encrypt-secrets

Requires:
    - .env file with Snowflake credentials (or SNOWFLAKE_MOCK_MODE=true)
"""

import argparse
import sys

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from clist.api.dependencies import open_storage_repository  # noqa: E402
from clist.config.settings import get_settings  # noqa: E402
from clist.core.files.models import StorageConfig  # noqa: E402
from clist.infrastructure.secrets import SecretCipher  # noqa: E402
from clist.infrastructure.snowflake.repositories.storages import StorageNotFoundError  # noqa: E402


def cmd_init_schema(args) -> int:
    with open_storage_repository(get_settings()) as repository:
        repository.ensure_schema()
    print("Storage schema ready")
    return 0


def cmd_list(args) -> int:
    with open_storage_repository(get_settings()) as repository:
        storages = repository.list_all()

    if not storages:
        print("No storages configured")
        return 0

    for storage in storages:
        visibility = "public" if storage.is_public else "private"
        base = f"/{storage.base_path}" if storage.base_path else "/"
        print(f"[{storage.id}] {storage.name} ({visibility})")
        print(f"    {storage.endpoint}  bucket={storage.bucket}  region={storage.region}  base={base}")
    print(f"\nTotal: {len(storages)}")
    return 0


def cmd_add(args) -> int:
    try:
        storage = StorageConfig(
            name=args.name,
            endpoint=args.endpoint,
            access_key_id=args.access_key_id,
            secret_access_key=args.secret_access_key,
            bucket=args.bucket,
            region=args.region,
            base_path=args.base_path,
            is_public=args.public,
        )
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    with open_storage_repository(get_settings()) as repository:
        storage = repository.create(storage)
    print(f"[OK] Created storage {storage.id}: {storage.name}")
    return 0


def cmd_remove(args) -> int:
    with open_storage_repository(get_settings()) as repository:
        try:
            repository.delete(args.id)
        except StorageNotFoundError:
            print(f"ERROR: Storage {args.id} not found")
            return 1
    print(f"[OK] Removed storage {args.id}")
    return 0


def cmd_generate_key(args) -> int:
    print("Add this to your .env to encrypt storage secrets at rest:\n")
    print(f"CREDENTIALS_ENCRYPTION_KEY={SecretCipher.generate_key()}")
    return 0


def cmd_encrypt_secrets(args) -> int:
    """Rewrite every secret so rows stored in plain text get encrypted."""
    settings = get_settings()
    if not settings.credentials_encryption_key:
        print("ERROR: CREDENTIALS_ENCRYPTION_KEY is not set")
        return 1

    with open_storage_repository(settings) as repository:
        storages = repository.list_all()
        for storage in storages:
            secret = repository.get(storage.id).secret_access_key
            repository.update(storage.id, {"secret_access_key": secret})
            print(f"[OK] Encrypted secret of storage {storage.id}: {storage.name}")

    print(f"\nUpdated: {len(storages)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Manage CList storage configurations')
    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('init-schema', help='Create the storages table').set_defaults(func=cmd_init_schema)
    commands.add_parser('list', help='List all storages').set_defaults(func=cmd_list)

    add = commands.add_parser('add', help='Add a storage')
    add.add_argument('--name', required=True)
    add.add_argument('--endpoint', required=True, help='S3 endpoint URL')
    add.add_argument('--bucket', required=True)
    add.add_argument('--access-key-id', required=True)
    add.add_argument('--secret-access-key', required=True)
    add.add_argument('--region', default='auto')
    add.add_argument('--base-path', default='', help='Folder inside the bucket to expose')
    add.add_argument('--public', action='store_true', help='Visible without logging in')
    add.set_defaults(func=cmd_add)

    remove = commands.add_parser('remove', help='Remove a storage')
    remove.add_argument('id', type=int)
    remove.set_defaults(func=cmd_remove)

    commands.add_parser(
        'generate-key', help='Print a new CREDENTIALS_ENCRYPTION_KEY'
    ).set_defaults(func=cmd_generate_key)
    commands.add_parser(
        'encrypt-secrets', help='Encrypt secrets stored before a key was configured'
    ).set_defaults(func=cmd_encrypt_secrets)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    sys.exit(args.func(args))


if __name__ == '__main__':
    main()
