"""
Face Authentication Command Line Tool

Runs the authentication core directly against the local SQLite gallery,
without the API server. Inputs are JSON files holding either raw
face-mesh landmarks ([{"x": .., "y": .., "z": ..}, ...] or
{"landmarks": [...]}) or an already computed embedding ([0.12, ...] or
{"face_embedding": [...]}).

Usage:
    # Embedding and quality of a landmark capture
    python scripts/run_face_auth.py analyze capture.json

    # Create a user, then enroll a capture for them
    python scripts/run_face_auth.py create-user --name Alice --email alice@example.com
    python scripts/run_face_auth.py enroll --user-id usr_1a2b3c4d capture.json

    # Identify a capture against every enrolled user
    python scripts/run_face_auth.py authenticate probe.json

    # List users
    python scripts/run_face_auth.py users --search alice

Exit codes: 0 success / match, 1 rejected / no match, 2 error. An
enrollment refused for its quality, an existing enrollment or the abuse
guard counts as rejected; an unknown user or unreadable input is an error.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple

# Add project root to path
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.abuse_guard import AbuseGuard
from core.config import get_config
from core.errors import (
    ConflictError,
    FaceAuthError,
    RateLimitExceeded,
    SecurityViolation,
    ValidationError,
)
from core.gallery_store import GalleryStore, get_gallery_store
from core.service import FaceAuthService

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_ERROR = 2

# Identifies the command line client to the abuse guard
CLI_CLIENT_KEY = "cli"
CLI_USER_AGENT = "face-auth-cli/0.1"


def print_banner(text: str, char: str = "="):
    line = char * 60
    print(f"\n{line}")
    print(text)
    print(line)


def load_input(path: Path) -> Tuple[str, List[Any]]:
    """
    Read a capture file.

    Returns:
        ("embedding", values) or ("landmarks", points).

    Raises:
        ValueError: Unrecognized file layout.
    """
    with open(path) as f:
        data = json.load(f)

    if isinstance(data, dict):
        if "face_embedding" in data:
            return "embedding", data["face_embedding"]
        if "landmarks" in data:
            return "landmarks", data["landmarks"]
        raise ValueError(f"{path}: expected a 'landmarks' or 'face_embedding' key")

    if isinstance(data, list) and data:
        if all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in data):
            return "embedding", data
        return "landmarks", data

    raise ValueError(f"{path}: expected a non-empty list or object")


def build_service(db_path: str = None) -> FaceAuthService:
    config = get_config()
    store = GalleryStore(db_path) if db_path else get_gallery_store()
    return FaceAuthService(store=store, abuse_guard=AbuseGuard(config.get("abuse_guard", {})), config=config)


def resolve_embedding(service: FaceAuthService, path: Path) -> Tuple[List[float], float]:
    """Embedding from a capture file, plus its quality when landmarks were given (else -1)."""
    kind, values = load_input(path)
    if kind == "embedding":
        return values, -1.0

    analysis = service.analyze_landmarks(values)
    return analysis.embedding, analysis.quality


# ============================================================
# Commands
# ============================================================

def cmd_analyze(service: FaceAuthService, args: argparse.Namespace) -> int:
    kind, values = load_input(Path(args.input))
    if kind != "landmarks":
        print("ERROR: analyze needs a landmark file, not an embedding")
        return EXIT_ERROR

    analysis = service.analyze_landmarks(values)

    print_banner("Landmark Analysis")
    print(f"  Landmarks:        {len(values)}")
    print(f"  Embedding length: {len(analysis.embedding)}")
    print(f"  Quality:          {analysis.quality:.3f} (minimum {service.min_quality:.2f})")
    for check in ("level_ok", "centered_ok", "size_ok", "depth_ok"):
        if check in analysis.details:
            print(f"    {check:<12} {analysis.details[check]}")
    print(f"  Ready to enroll:  {analysis.ready_for_enrollment}")

    if args.output:
        with open(args.output, "w") as f:
            json.dump({"face_embedding": analysis.embedding, "quality": analysis.quality}, f)
        print(f"  Saved embedding to {args.output}")

    return EXIT_OK if analysis.ready_for_enrollment else EXIT_REJECTED


def cmd_create_user(service: FaceAuthService, args: argparse.Namespace) -> int:
    user = service.store.create_user(args.name, args.email)
    print(f"Created user {user['name']} <{user['email']}> with id {user['user_id']}")
    return EXIT_OK


def cmd_enroll(service: FaceAuthService, args: argparse.Namespace) -> int:
    embedding, quality = resolve_embedding(service, Path(args.input))

    if args.quality is not None:
        quality = args.quality
    if quality < 0:
        print("ERROR: --quality is required when enrolling a precomputed embedding")
        return EXIT_ERROR

    try:
        outcome = service.enroll(
            user_id=args.user_id,
            embedding=embedding,
            quality=quality,
            client_key=CLI_CLIENT_KEY,
            client_agent=CLI_USER_AGENT,
        )
    except (ValidationError, ConflictError, SecurityViolation, RateLimitExceeded) as e:
        print_banner("ENROLLMENT REJECTED")
        print(f"  {e.code}: {e.message}")
        return EXIT_REJECTED

    print_banner("Enrollment Complete")
    print(f"  User:    {outcome.user_id}")
    print(f"  Face ID: {outcome.face_id}")
    print(f"  Quality: {outcome.quality:.3f}")
    return EXIT_OK


def cmd_authenticate(service: FaceAuthService, args: argparse.Namespace) -> int:
    embedding, _ = resolve_embedding(service, Path(args.input))
    decision = service.authenticate(embedding)

    if args.json:
        print(json.dumps({
            "success": decision.authenticated,
            "user_id": decision.identity_id,
            "similarity": decision.similarity,
            "threshold": decision.threshold,
            "message": decision.message,
        }, indent=2))
    else:
        print_banner("MATCH" if decision.authenticated else "NO MATCH")
        print(f"  {decision.message}")
        print(f"  Similarity: {decision.similarity:.4f}")
        print(f"  Threshold:  {decision.threshold:.4f}")
        if decision.authenticated:
            print(f"  User:       {decision.identity_name} ({decision.identity_id})")

    return EXIT_OK if decision.authenticated else EXIT_REJECTED


def cmd_users(service: FaceAuthService, args: argparse.Namespace) -> int:
    users, total = service.store.list_users(search=args.search, limit=args.limit, offset=args.offset)

    print(f"{total} user(s)")
    for user in users:
        enrolled = "enrolled" if user["has_face_data"] else "not enrolled"
        print(f"  {user['user_id']}  {user['name']:<24} {user['email']:<32} {enrolled}")

    return EXIT_OK


COMMANDS: Dict[str, Any] = {
    "analyze": cmd_analyze,
    "create-user": cmd_create_user,
    "enroll": cmd_enroll,
    "authenticate": cmd_authenticate,
    "users": cmd_users,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Landmark face authentication (local, no API server)",
    )
    parser.add_argument("--db", type=str, default=None,
                        help="SQLite database path (default: storage.db_path from config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Embedding and quality of a landmark file")
    analyze.add_argument("input", help="Landmark JSON file")
    analyze.add_argument("-o", "--output", help="Write the embedding to this JSON file")

    create_user = subparsers.add_parser("create-user", help="Create a user")
    create_user.add_argument("--name", required=True, help="Display name")
    create_user.add_argument("--email", required=True, help="Unique email address")

    enroll = subparsers.add_parser("enroll", help="Enroll a capture for an existing user")
    enroll.add_argument("--user-id", dest="user_id", required=True, help="User to enroll")
    enroll.add_argument("input", help="Landmark or embedding JSON file")
    enroll.add_argument("--quality", type=float, default=None,
                        help="Quality score (computed from landmarks if omitted)")

    authenticate = subparsers.add_parser("authenticate", help="Identify a capture")
    authenticate.add_argument("input", help="Landmark or embedding JSON file")
    authenticate.add_argument("--json", action="store_true", help="Print the decision as JSON")

    users = subparsers.add_parser("users", help="List users")
    users.add_argument("--search", default=None)
    users.add_argument("--limit", type=int, default=50)
    users.add_argument("--offset", type=int, default=0)

    return parser


def main(argv: List[str] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        service = build_service(args.db)
        return COMMANDS[args.command](service, args)
    except FaceAuthError as e:
        field = f" [{e.details['field']}]" if "field" in e.details else ""
        print(f"ERROR ({e.code}){field}: {e.message}")
        return EXIT_ERROR
    except (OSError, ValueError) as e:
        print(f"ERROR: {e}")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
