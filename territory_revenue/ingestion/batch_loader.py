"""
Revenue Batch Loader

Reads revenue fact files (CSV, JSON Lines or Parquet) with Polars and
records each file as one all-or-nothing batch.

Run with:
    python -m territory_revenue.ingestion.batch_loader data/revenue.csv

Expected columns:
    business_event_id, customer_reference, actual_amount,
    forecast_amount, revenue_date_key
"""

import argparse
import asyncio
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Union

import polars as pl
import structlog

from territory_revenue.config.logging import configure_logging
from territory_revenue.database.connection import close_database, get_session_factory, init_database
from territory_revenue.warehouse import LoadResult, LoadStatus, RevenueWarehouse

logger = structlog.get_logger(__name__)

REVENUE_SCHEMA = {
    "business_event_id": pl.Int64,
    "customer_reference": pl.Int64,
    "actual_amount": pl.Utf8,
    "forecast_amount": pl.Utf8,
    "revenue_date_key": pl.Int64,
}


class FileFormat(str, Enum):
    """Supported file formats"""
    CSV = "csv"
    JSONL = "jsonl"
    PARQUET = "parquet"


@dataclass
class RevenueFileConfig:
    """Configuration for one revenue file"""
    file_path: Union[str, Path]
    file_format: FileFormat = FileFormat.CSV
    delimiter: str = ","
    null_values: List[str] = field(default_factory=lambda: ["", "NULL", "null", "None", "NA", "N/A"])


class RevenueBatchLoader:
    """
    Loads revenue files into the warehouse.

    Example:
        loader = RevenueBatchLoader(warehouse)
        result = await loader.load(RevenueFileConfig("data/revenue_2024q4.csv"))
    """

    def __init__(self, warehouse: RevenueWarehouse):
        self.warehouse = warehouse

    def _compute_file_hash(self, file_path: Path) -> str:
        """MD5 of the file, logged for audit"""
        hash_md5 = hashlib.md5()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(4096), b""):
                hash_md5.update(chunk)
        return hash_md5.hexdigest()

    def read(self, config: RevenueFileConfig) -> pl.DataFrame:
        """Read a revenue file; amounts stay decimal strings until recorded"""
        if config.file_format == FileFormat.CSV:
            df = pl.read_csv(
                config.file_path,
                separator=config.delimiter,
                null_values=config.null_values,
                schema_overrides=REVENUE_SCHEMA,
            )
        elif config.file_format == FileFormat.JSONL:
            df = pl.read_ndjson(config.file_path)
        elif config.file_format == FileFormat.PARQUET:
            df = pl.read_parquet(config.file_path)
        else:
            raise ValueError(f"Unsupported file format: {config.file_format}")

        # Remove completely null rows
        return df.filter(~pl.all_horizontal(pl.all().is_null()))

    async def load(self, config: RevenueFileConfig) -> LoadResult:
        path = Path(config.file_path)
        file_hash = self._compute_file_hash(path)
        df = self.read(config)

        result = await self.warehouse.load_revenue(df)
        if result.status == LoadStatus.FAILED:
            logger.warning("Revenue file rejected", file=str(path), file_hash=file_hash)
            return result

        logger.info(
            "Revenue file loaded",
            file=str(path),
            file_hash=file_hash,
            rows_loaded=result.rows_loaded,
        )
        return result


async def main(paths: List[str], file_format: FileFormat) -> None:
    configure_logging()
    await init_database()

    try:
        loader = RevenueBatchLoader(RevenueWarehouse(get_session_factory()))
        for path in paths:
            await loader.load(RevenueFileConfig(path, file_format=file_format))
    finally:
        await close_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Load revenue fact files")
    parser.add_argument("paths", nargs="+", help="Revenue files to load, one batch per file")
    parser.add_argument(
        "--format",
        choices=[f.value for f in FileFormat],
        default=FileFormat.CSV.value,
        help="File format (default: csv)",
    )
    args = parser.parse_args()
    asyncio.run(main(args.paths, FileFormat(args.format)))
