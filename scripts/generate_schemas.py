"""Write JSON schemas for the lock, verify and witness documents to schemas/."""

import json
from pathlib import Path

from datalock.kernel.lockfile import Lockfile
from datalock.kernel.refusal import RefusalEnvelope
from datalock.kernel.verify import VerifyReport
from datalock.kernel.witness import WitnessRecord


SCHEMAS = {
    "lock.v0.schema.json": Lockfile,
    "lock-verify.v0.schema.json": VerifyReport,
    "refusal.schema.json": RefusalEnvelope,
    "witness-record.schema.json": WitnessRecord,
}


def generate_schemas():
    """Generate one schema file per document model."""
    schemas_dir = Path(__file__).parent.parent / "schemas"
    schemas_dir.mkdir(exist_ok=True)

    for filename, model in SCHEMAS.items():
        schema_path = schemas_dir / filename
        with open(schema_path, 'w', encoding='utf-8') as f:
            json.dump(model.model_json_schema(), f, indent=2, ensure_ascii=False, sort_keys=True)
        print(f"Generated: {schema_path}")

    print("\nSchema generation complete!")


if __name__ == "__main__":
    generate_schemas()
