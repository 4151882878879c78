#!/usr/bin/env python3
"""Command line entry point for the MedScribe service and workstation client."""

from __future__ import annotations

import argparse
import getpass
import json
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from medscribe import catalog
from medscribe.client.api import ApiClient
from medscribe.client.profile import API_SETTINGS_SLOT, DEFAULT_PROFILE, ProfileStore, default_profile_dir
from medscribe.client.session import SessionManager
from medscribe.client.speech import SpeechTokenCache
from medscribe.client.training import TrainingConfigStore
from medscribe.client.workspace import ScribeWorkspace
from medscribe.errors import MedScribeError, ValidationError
from medscribe.patients import full_name, patient_age, sort_by_name


class Context:
    """Client objects wired together for one profile."""

    def __init__(self, args: argparse.Namespace) -> None:
        directory = Path(args.profile_dir) if args.profile_dir else default_profile_dir(args.profile)
        self.profile = ProfileStore(directory)
        self.api = ApiClient.from_settings(self.profile.read(API_SETTINGS_SLOT), args.api_url)
        self.session = SessionManager(self.profile, self.api)
        self.api.headers_provider = self.session.auth_headers
        self.session.restore()
        self.training = TrainingConfigStore(self.profile, self.session)


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2, default=str))


def _read_text(path: Optional[str]) -> str:
    if not path or path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("medscribe.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    from medscribe.table_store import TableStore, create_engine
    from medscribe.users import USERS_TABLE, UserRepository

    engine = create_engine()
    generated = UserRepository(TableStore(engine, USERS_TABLE)).ensure_bootstrap_admin()
    print(f"Database initialised at {engine.url.render_as_string(hide_password=True)}")
    if generated:
        print(f"Created administrator account with password: {generated}")
        print("Change this password before production use.")
    return 0


def cmd_login(args: argparse.Namespace) -> int:
    ctx = Context(args)
    password = args.password or getpass.getpass("Password: ")
    session = ctx.session.login(args.username, password)
    print(f"Signed in as {session.name} ({session.role}); session expires {session.session_expiry.isoformat()}")
    return 0


def cmd_logout(args: argparse.Namespace) -> int:
    Context(args).session.logout()
    print("Signed out")
    return 0


def cmd_whoami(args: argparse.Namespace) -> int:
    session = Context(args).session.current_session()
    if session is None:
        print("Not signed in")
        return 1
    _print_json({k: v for k, v in session.to_dict().items() if k != "token"})
    return 0


def cmd_settings(args: argparse.Namespace) -> int:
    profile = Context(args).profile
    if args.settings_command == "set":
        settings = dict(profile.read(API_SETTINGS_SLOT) or {})
        if args.base_url:
            if not args.base_url.startswith(("http://", "https://")):
                raise ValidationError("Service URL must start with http:// or https://")
            settings["baseUrl"] = args.base_url.rstrip("/")
        if args.timeout is not None:
            if args.timeout <= 0:
                raise ValidationError("Timeout must be positive")
            settings["timeout"] = args.timeout
        profile.write(API_SETTINGS_SLOT, settings)
    elif args.settings_command == "clear":
        profile.clear(API_SETTINGS_SLOT)
    _print_json(profile.read(API_SETTINGS_SLOT) or {})
    return 0


def cmd_patients(args: argparse.Namespace) -> int:
    ctx = Context(args)
    patients = sort_by_name(ctx.api.list_patients(search=args.search))
    for patient in patients:
        age = patient_age(patient)
        age_text = f"{age}y" if age is not None else "?"
        print(f"{patient.get('id')}  {full_name(patient)}  {patient.get('dateOfBirth') or ''}  {age_text}")
    return 0


def cmd_training(args: argparse.Namespace) -> int:
    ctx = Context(args)
    store = ctx.training
    if args.training_command == "set-specialty":
        store.set_specialty(args.key)
    elif args.training_command == "set-note-type":
        store.set_note_type(args.key)
    elif args.training_command == "add-note":
        note = store.add_baseline_note(_read_text(args.file))
        print(f"Added baseline note {note.id}")
    elif args.training_command == "remove-note":
        store.remove_baseline_note(args.note_id)
    elif args.training_command == "catalog":
        for key, entry in catalog.MEDICAL_SPECIALTIES.items():
            print(f"{key}: {entry['name']}")
            for note_key, label in catalog.note_types(key).items():
                print(f"    {note_key}: {label}")
        return 0
    config = store.config
    _print_json(
        {
            "specialty": config.specialty,
            "noteType": config.note_type,
            "baselineNotes": [
                {"id": n.id, "addedBy": n.added_by, "dateAdded": n.date_added, "preview": n.content[:60]}
                for n in config.baseline_notes
            ],
        }
    )
    return 0


def cmd_generate(args: argparse.Namespace) -> int:
    ctx = Context(args)
    workspace = ScribeWorkspace(ctx.session, ctx.training, ctx.api)
    workspace.append_transcript(_read_text(args.transcript))
    if args.patient:
        workspace.select_patient(ctx.api.get_patient(args.patient))
    if not workspace.generate_notes():
        print(workspace.status, file=sys.stderr)
        return 1
    print(workspace.notes)
    if args.save:
        if workspace.save_visit() is None:
            print(workspace.status, file=sys.stderr)
            return 1
        print(workspace.status, file=sys.stderr)
    return 0


def cmd_speech_token(args: argparse.Namespace) -> int:
    ctx = Context(args)
    token = SpeechTokenCache(ctx.api).get_token()
    _print_json({"region": token.get("region"), "expiresIn": token.get("expiresIn")})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="medscribe", description="MedScribe medical documentation tools.")
    parser.add_argument("--profile", default=DEFAULT_PROFILE, help="Client profile name (default: %(default)s)")
    parser.add_argument("--profile-dir", help="Explicit profile directory, overriding --profile")
    parser.add_argument("--api-url", help="Service base URL (default: $MEDSCRIBE_API_URL or local)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    init_db = sub.add_parser("init-db", help="Create tables and the initial administrator")
    init_db.set_defaults(func=cmd_init_db)

    login = sub.add_parser("login", help="Sign in and store the session in the profile")
    login.add_argument("username")
    login.add_argument("--password", help="Password (prompted when omitted)")
    login.set_defaults(func=cmd_login)

    sub.add_parser("logout", help="Sign out and clear stored credentials").set_defaults(func=cmd_logout)
    sub.add_parser("whoami", help="Show the current session").set_defaults(func=cmd_whoami)

    settings = sub.add_parser("settings", help="Show or change the stored API settings (cleared on logout)")
    settings_sub = settings.add_subparsers(dest="settings_command")
    settings_sub.add_parser("show")
    settings_set = settings_sub.add_parser("set")
    settings_set.add_argument("--base-url", help="Service base URL")
    settings_set.add_argument("--timeout", type=float, help="Request timeout in seconds")
    settings_sub.add_parser("clear")
    settings.set_defaults(func=cmd_settings)

    patients = sub.add_parser("patients", help="List patients")
    patients.add_argument("--search", help="Filter by name, date of birth, phone, email or id")
    patients.set_defaults(func=cmd_patients)

    training = sub.add_parser("training", help="Show or change the training configuration")
    training_sub = training.add_subparsers(dest="training_command")
    training_sub.add_parser("show")
    training_sub.add_parser("catalog")
    specialty = training_sub.add_parser("set-specialty")
    specialty.add_argument("key")
    note_type = training_sub.add_parser("set-note-type")
    note_type.add_argument("key")
    add_note = training_sub.add_parser("add-note")
    add_note.add_argument("file", nargs="?", help="File holding the note text ('-' or omitted for stdin)")
    remove_note = training_sub.add_parser("remove-note")
    remove_note.add_argument("note_id")
    training.set_defaults(func=cmd_training)

    generate = sub.add_parser("generate", help="Generate a note from a transcript")
    generate.add_argument("transcript", nargs="?", help="Transcript file ('-' or omitted for stdin)")
    generate.add_argument("--patient", help="Patient id to use as context")
    generate.add_argument("--save", action="store_true", help="Save the visit after generating")
    generate.set_defaults(func=cmd_generate)

    sub.add_parser("speech-token", help="Fetch a speech service token").set_defaults(func=cmd_speech_token)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return int(args.func(args) or 0)
    except MedScribeError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
