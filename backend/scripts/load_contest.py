"""Load contest definitions from YAML or JSON files into the database."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Sequence

import yaml
from loguru import logger
from pydantic import ValidationError

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.db import init_db, session_scope
from app.domain import ContestDefinition
from app.domain.errors import InvalidContestDefinition
from app.services.contest_service import ContestService
from app.services.locks import ContestLockRegistry


def read_document(path: Path) -> Any:
    """Parse ``path`` as JSON when it has a ``.json`` suffix, otherwise as YAML."""

    text = path.read_text()
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def load_definitions(path: Path) -> list[ContestDefinition]:
    document = read_document(path)
    if isinstance(document, dict) and "contests" in document:
        document = document["contests"]
    if isinstance(document, dict):
        document = [document]
    if not isinstance(document, list):
        raise InvalidContestDefinition(f"{path} does not contain a contest or a list of contests")

    definitions: list[ContestDefinition] = []
    for index, payload in enumerate(document):
        try:
            definitions.append(ContestDefinition.model_validate(payload))
        except ValidationError as exc:
            raise InvalidContestDefinition(f"{path} entry {index}: {exc}") from exc
    return definitions


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create contests from YAML or JSON definition files")
    parser.add_argument("paths", nargs="+", type=Path, help="Definition files to load")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate the definitions without writing them to the database",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(get_settings())

    definitions: list[ContestDefinition] = []
    for path in args.paths:
        try:
            loaded = load_definitions(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.error("Could not load {}: {}", path, exc)
            return 1
        logger.info("Validated {} contest definitions from {}", len(loaded), path)
        definitions.extend(loaded)

    if args.dry_run:
        logger.info("Dry run; {} contests not written", len(definitions))
        return 0

    init_db()
    created = 0
    with session_scope() as session:
        service = ContestService(session, locks=ContestLockRegistry())
        for definition in definitions:
            try:
                service.create_contest(definition)
            except InvalidContestDefinition as exc:
                logger.warning("Skipping contest {}: {}", definition.contest_id, exc)
                continue
            created += 1

    logger.info("Created {} of {} contests", created, len(definitions))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
