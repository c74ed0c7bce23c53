"""
Row Store

Excel workbook used as row source and result sink.

Layout (first sheet, no header):
- Column A: destination Cosmos address
- Column B: seed phrase of the source wallet (blank = reuse previous)
- Column C: result, filled in by the sender

Only column C is ever modified. The whole sheet is held in memory and
rewritten to the output file on every flush.
"""

import os
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import pandas as pd
from loguru import logger

from .errors import RowSourceError


ADDRESS_COL = 0
SEED_COL = 1
RESULT_COL = 2


@dataclass(frozen=True)
class RowState:
    """One workbook row as read from the source"""
    index: int
    destination: Optional[object]
    credential_override: str = ''
    result: str = ''

    @property
    def has_destination(self) -> bool:
        return self.destination is not None and str(self.destination).strip() != ''

    @property
    def excel_row(self) -> int:
        return self.index + 1


def _cell(value) -> Optional[object]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, str):
        return value.strip()
    return value


class ExcelRowStore:
    """
    Read rows from an input workbook and write results to an output workbook

    Features:
    - Single read of the first sheet
    - In-place result column updates
    - Atomic rewrite of the output file (temp file + rename)
    """

    def __init__(self, input_path: str, output_path: str):
        """
        Load the input workbook

        Args:
            input_path: Workbook with addresses and seed phrases
            output_path: Workbook the results are written to

        Raises:
            RowSourceError: if the input file is missing or unreadable
        """
        self.input_path = Path(input_path)
        self.output_path = Path(output_path)
        self.flush_count = 0

        if not self.input_path.exists():
            raise RowSourceError(
                f"File {self.input_path} does not exist! Make sure it is in the working directory."
            )

        try:
            df = pd.read_excel(self.input_path, sheet_name=0, header=None, dtype=object)
        except (ValueError, OSError, zipfile.BadZipFile) as e:
            raise RowSourceError(f"Could not read {self.input_path}: {e}") from e

        for col in (ADDRESS_COL, SEED_COL, RESULT_COL):
            if col not in df.columns:
                df[col] = None

        df = df[sorted(df.columns)].astype(object)
        self.df = df
        logger.info(f"📖 Read {len(df)} rows from {self.input_path}")

    def __len__(self) -> int:
        return len(self.df)

    def rows(self) -> List[RowState]:
        states = []
        for i in range(len(self.df)):
            seed = _cell(self.df.iat[i, SEED_COL])
            result = _cell(self.df.iat[i, RESULT_COL])
            states.append(RowState(
                index=i,
                destination=_cell(self.df.iat[i, ADDRESS_COL]),
                credential_override=str(seed) if seed is not None else '',
                result=str(result) if result is not None else '',
            ))
        return states

    def set_result(self, index: int, text: str):
        self.df.iat[index, RESULT_COL] = text

    def get_result(self, index: int) -> str:
        value = _cell(self.df.iat[index, RESULT_COL])
        return '' if value is None else str(value)

    def flush(self):
        """Write the full sheet (inputs untouched, results updated) to the output file"""
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.output_path.with_name(f".{self.output_path.stem}.tmp{self.output_path.suffix}")

        self.df.to_excel(tmp_path, header=False, index=False, engine='openpyxl')
        os.replace(tmp_path, self.output_path)

        self.flush_count += 1
        logger.info(f"✓ Progress saved to: {self.output_path}")


def default_output_path(input_path: str) -> str:
    """cosmos_addresses.xlsx -> cosmos_addresses_atom_sent.xlsx"""
    if input_path.endswith('.xlsx'):
        return input_path[:-len('.xlsx')] + '_atom_sent.xlsx'
    return input_path + '_atom_sent.xlsx'
