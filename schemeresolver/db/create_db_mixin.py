import json
from datetime import datetime
from pathlib import Path
from sqlalchemy.exc import IntegrityError
from schemeresolver.db.base import Base
from schemeresolver.db import models

# Seed sections in dependency order
SEED_SECTIONS = [
    ("loci", models.LocusModel),
    ("schemes", models.SchemeModel),
    ("scheme_members", models.SchemeMember),
    ("scheme_fields", models.SchemeField),
    ("allele_designations", models.AlleleDesignationModel),
]


class CreateDBMixin:
    def create_db(self, overwrite=False, seed_file=None):
        self.db_uri = self._normalize_uri(self.db_uri)
        if self.exists_db() and not overwrite and not self._is_memory():
            msn = f"Database already exists at {self.db_uri}"
            self.logger.log(msn, "WARNING")
            return False

        self.connect(check_exists=False)

        self.logger.log("Creating tables...", "INFO")
        self._create_tables(drop=overwrite)

        if seed_file:
            self.logger.log(f"Seeding scheme metadata from {seed_file}", "INFO")
            self.seed_from_json(seed_file)

        self.logger.log(f"Database created at {self.db_uri}", "INFO")
        return True

    def _create_tables(self, drop=False):
        if drop:
            Base.metadata.drop_all(self.engine)
        Base.metadata.create_all(self.engine)

    def seed_from_json(self, file):
        json_path = Path(file)
        if not json_path.exists():
            self.logger.log(f"JSON not found: {json_path}", "WARNING")
            return 0

        with json_path.open("r") as f:
            data = json.load(f)

        with self.get_session() as session:
            try:
                added = self._seed_sections(session, data)
                session.commit()
            except IntegrityError:
                session.rollback()
                msn = "Seed data already exists. Skipping."
                self.logger.log(msn, "WARNING")
                return 0
        self.logger.log(f"Seeded {added} rows", "INFO")
        return added

    def _seed_sections(self, session, data):
        added = 0
        for key, model_class in SEED_SECTIONS:
            for item in data.get(key, []):
                if isinstance(item.get("date_entered"), str):
                    try:
                        item["date_entered"] = datetime.fromisoformat(
                            item["date_entered"]
                        )
                    except ValueError:
                        self.logger.log(
                            f"Invalid datetime format in {key}: {item['date_entered']}",  # noqa E501
                            "WARNING",
                        )
                        item.pop("date_entered")
                try:
                    session.add(model_class(**item))
                    added += 1
                except TypeError as e:
                    self.logger.log(f"Failed to add {item}: {e}", "ERROR")
            # Flush per section so later sections see their parents
            session.flush()
        return added
