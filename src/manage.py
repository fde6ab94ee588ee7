"""Reconciliation management CLI.

Creates and drops the database schema, and seeds the business settings with
their defaults.

Usage:
    python src/manage.py setup-db        # Create all tables
    python src/manage.py drop-db         # Drop all tables
    python src/manage.py seed-settings   # Write default settings (keeps existing ones)
"""

import argparse
import sys

DEFAULT_SETTINGS = {
    "hora_limite_entrega_dia": "12:00",
    "feriados": [],
    "dias_funcionamento": ["segunda", "terca", "quarta", "quinta", "sexta"],
    "entregas_por_recorrencia": {"diaria": 20, "semanal": 4, "quinzenal": 2, "mensal": 1},
    "janelas_horario_entregas_avulsas": ["08:00-09:00", "09:00-10:00", "10:00-11:00", "11:00-12:00"],
    "janelas_horario_entregas_assinaturas": ["08:00-09:00", "09:00-10:00", "10:00-11:00", "11:00-12:00"],
    "fuso_horario": "America/Sao_Paulo",
    "ambiente_ativo_pix": "producao",
    "limite_consultas_por_minuto": 60,
}


def _domain():
    from reconciliation.domain import reconciliation

    reconciliation.init()
    return reconciliation


def setup_database():
    from reconciliation.utils.db import setup_db

    domain = _domain()
    print("Creating reconciliation database schema...")
    created = setup_db(domain)
    print(f"  schema ready on: {', '.join(created) or 'no SQL provider configured'}")


def drop_database():
    from reconciliation.utils.db import drop_db

    domain = _domain()
    print("Dropping reconciliation database schema...")
    dropped = drop_db(domain)
    print(f"  schema dropped on: {', '.join(dropped) or 'no SQL provider configured'}")


def seed_settings(overwrite=False):
    """Write DEFAULT_SETTINGS, leaving already-stored keys alone unless `overwrite`."""
    from protean.exceptions import ObjectNotFoundError
    from reconciliation.settings.setting import Setting

    domain = _domain()
    with domain.domain_context():
        repo = domain.repository_for(Setting)
        for key, value in DEFAULT_SETTINGS.items():
            try:
                setting = repo.get(key)
            except ObjectNotFoundError:
                repo.add(Setting.create(key, value))
                print(f"  {key} created")
                continue
            if overwrite:
                setting.change(value)
                repo.add(setting)
                print(f"  {key} overwritten")
            else:
                print(f"  {key} kept")
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Reconciliation management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    seed_parser = subparsers.add_parser("seed-settings", help="Write default business settings")
    seed_parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace settings that already exist",
    )

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "seed-settings":
        seed_settings(args.overwrite)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
