from sqlalchemy import text
from typing import Dict, Any
from datetime import datetime
from zoneinfo import ZoneInfo
import logging


logger = logging.getLogger(__name__)

class FrontendIDGenerator:
    """
    Service for generating human-readable frontend IDs for all models.
    Uses year-based sequential format with automatic counter reset.

    Format: PREFIX-00001-26 (where 26 is the year)
    Counter resets to 00001 on January 1st of each year.
    Master data (materials) uses a plain PREFIX-00001 counter.
    """

    ID_PATTERNS: Dict[str, Dict[str, Any]] = {
        "material_master": {
            "prefix": "MAT",
            "column_name": "frontend_id",
            "description": "Material Master IDs (MAT-00001, MAT-00002, etc.)",
            "no_year_suffix": True
        },
        "profile_batch": {
            "prefix": "PB",
            "column_name": "frontend_id",
            "description": "Profile Batch IDs (PB-00001-26, PB-00002-26, etc.)"
        },
        "simple_batch": {
            "prefix": "SB",
            "column_name": "frontend_id",
            "description": "Simple Batch IDs (SB-00001-26, SB-00002-26, etc.)"
        },
        "order_master": {
            "prefix": "ORD",
            "column_name": "frontend_id",
            "description": "Order Master IDs (ORD-00001-26, ORD-00002-26, etc.)"
        },
        "cutting_plan": {
            "prefix": "CP",
            "column_name": "frontend_id",
            "description": "Cutting Plan IDs (CP-00001-26, CP-00002-26, etc.)"
        },
        "stock_transaction": {
            "prefix": "STX",
            "column_name": "frontend_id",
            "description": "Stock Transaction IDs (STX-00001-26, STX-00002-26, etc.)"
        },
    }

    @classmethod
    def generate_frontend_id(cls, table_name: str, db) -> str:
        """
        Generate a human-readable frontend ID.

        Args:
            table_name: The database table name
            db: SQLAlchemy Session or Connection the insert runs on

        Returns:
            Generated frontend ID string (e.g., "ORD-00001-26")

        Raises:
            ValueError: If table_name is not supported

        Several rows of one table inserted in the same flush all read the same
        committed maximum, so the last counter issued on this connection is
        remembered in ``db.info`` and the next ID is taken above both.
        """
        if table_name not in cls.ID_PATTERNS:
            raise ValueError(f"Unsupported table name: {table_name}. Supported tables: {list(cls.ID_PATTERNS.keys())}")

        config = cls.ID_PATTERNS[table_name]
        prefix = config["prefix"]
        column_name = config["column_name"]
        no_year_suffix = config.get("no_year_suffix", False)

        if no_year_suffix:
            pattern = f"{prefix}-%"
            suffix = ""
            cache_key = f"{table_name}"
        else:
            current_year = datetime.now(ZoneInfo("Asia/Kolkata")).strftime("%y")
            pattern = f"{prefix}-%-{current_year}"
            suffix = f"-{current_year}"
            cache_key = f"{table_name}:{current_year}"

        try:
            query = text(f"""
                SELECT {column_name}
                FROM {table_name}
                WHERE {column_name} LIKE :pattern
            """)

            result = db.execute(query, {"pattern": pattern}).fetchall()

            # Extract counter values and find max
            max_counter = 0
            for row in result:
                id_value = row[0]
                if id_value:
                    try:
                        # PREFIX-00123 or PREFIX-00123-26
                        parts = id_value.split("-")
                        if len(parts) >= 2:
                            max_counter = max(max_counter, int(parts[1]))
                    except (ValueError, IndexError):
                        continue

            issued = db.info.setdefault("frontend_id_counters", {})
            next_counter = max(max_counter, issued.get(cache_key, 0)) + 1
            issued[cache_key] = next_counter

            generated_id = f"{prefix}-{next_counter:05d}{suffix}"
            logger.debug(f"Generated ID for {table_name}: {generated_id} (counter: {next_counter})")
            return generated_id

        except Exception as e:
            logger.error(f"Error generating frontend ID for {table_name}: {e}")
            raise

    @classmethod
    def validate_frontend_id(cls, table_name: str, frontend_id: str) -> bool:
        """Check that a frontend ID matches the expected pattern for a table."""
        if table_name not in cls.ID_PATTERNS:
            return False

        config = cls.ID_PATTERNS[table_name]
        parts = frontend_id.split("-")
        expected_parts = 2 if config.get("no_year_suffix", False) else 3

        if len(parts) != expected_parts or parts[0] != config["prefix"]:
            return False
        if len(parts[1]) != 5 or not parts[1].isdigit():
            return False
        if expected_parts == 3 and (len(parts[2]) != 2 or not parts[2].isdigit()):
            return False
        return True
