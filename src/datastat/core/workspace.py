"""
Host-side session state: loaded datasets, the active one, and the command log.

The interpreter never touches this object; Workspace.execute() passes the
active dataset in explicitly and commits whatever the result asks for. Sheets
are swapped wholesale, so a failed command leaves the data exactly as it was.
"""
from typing import Dict, List, Optional

from datastat.config import settings
from datastat.core.aggregation import generate_ground_truth
from datastat.core.insights import build_analysis_prompt, build_report_prompt
from datastat.core.interpreter import interpret_command
from datastat.models import CommandResult, Dataset, LogEntry, LogType, SheetData
from datastat.utils.exceptions import DatasetNotFoundError, NoActiveDatasetError
from datastat.utils.logger import get_logger

logger = get_logger(__name__)


class Workspace:
    def __init__(self):
        self._datasets: Dict[str, Dataset] = {}
        self.active_name: Optional[str] = None
        self.logs: List[LogEntry] = []

    # --- datasets ---
    @property
    def datasets(self) -> List[Dataset]:
        return list(self._datasets.values())

    @property
    def active(self) -> Optional[Dataset]:
        if self.active_name is None:
            return None
        return self._datasets.get(self.active_name)

    def get(self, name: str) -> Dataset:
        if name not in self._datasets:
            raise DatasetNotFoundError(name, list(self._datasets))
        return self._datasets[name]

    def _unique_name(self, name: str) -> str:
        candidate, n = name, 1
        while candidate in self._datasets:
            n += 1
            candidate = f"{name}_{n}"
        return candidate

    def add_dataset(self, dataset: Dataset, activate: bool = True) -> Dataset:
        """Register a dataset; a clashing name gets a _2, _3, ... suffix."""
        name = self._unique_name(dataset.name)
        if name != dataset.name:
            dataset = dataset.model_copy(update={"name": name})
        self._datasets[name] = dataset
        if activate or self.active_name is None:
            self.active_name = name
        logger.info(f"Dataset '{name}' added ({len(dataset.sheets)} sheet(s))")
        return dataset

    def remove_dataset(self, name: str) -> None:
        self.get(name)
        del self._datasets[name]
        if self.active_name == name:
            self.active_name = next(iter(self._datasets), None)
        logger.info(f"Dataset '{name}' removed; active is now {self.active_name}")

    def clear(self) -> None:
        self._datasets.clear()
        self.active_name = None
        logger.info("Workspace cleared")

    def set_active_sheet(self, name: str, sheet: str) -> Dataset:
        dataset = self.get(name)
        if sheet not in dataset.sheets:
            raise DatasetNotFoundError(f"{name}/{sheet}", list(dataset.sheets))
        updated = dataset.model_copy(update={"active_sheet_name": sheet})
        self._datasets[name] = updated
        return updated

    # --- commands ---
    def _commit(self, result: CommandResult) -> None:
        dataset = self.active
        if result.replaces_data and dataset is not None:
            sheet = SheetData(rows=result.rows, summaries=result.summaries)
            sheets = {**dataset.sheets, dataset.active_sheet_name: sheet}
            self._datasets[dataset.name] = dataset.model_copy(update={"sheets": sheets})
        if result.switch_to is not None:
            self.active_name = result.switch_to

    def execute(self, command: str) -> CommandResult:
        """
        Run one line of input. The returned result's logs start with the
        command echo; handled=False means the text should go to the
        reasoning service (see analysis_prompt).
        """
        echo = LogEntry(type=LogType.COMMAND, content=command)
        self.logs.append(echo)

        if command.strip().lower() == "clear all":
            self.clear()
            return CommandResult(handled=True, logs=[echo])

        dataset = self.active
        if dataset is None:
            error = LogEntry(type=LogType.ERROR, content=NoActiveDatasetError().message)
            self.logs.append(error)
            return CommandResult(handled=True, logs=[echo, error])

        result = interpret_command(command, dataset, self.datasets)
        if result.handled:
            self._commit(result)
            self.logs.extend(result.logs)
        result.logs = [echo, *result.logs]
        return result

    # --- reasoning service payloads ---
    def analysis_prompt(self, query: str) -> str:
        dataset = self.active
        if dataset is None:
            raise NoActiveDatasetError()
        sheet = dataset.active_sheet
        return build_analysis_prompt(query, sheet.summaries, sheet.rows[:settings.PROMPT_SAMPLE_ROWS])

    def report(self, scope: str = "full", variables: Optional[List[str]] = None, focus: str = "") -> Dict[str, str]:
        dataset = self.active
        if dataset is None:
            raise NoActiveDatasetError()
        sheet = dataset.active_sheet
        ground_truth = generate_ground_truth(sheet.rows, sheet.summaries, scope, variables or [])
        return {
            "ground_truth": ground_truth,
            "prompt": build_report_prompt(sheet.summaries, ground_truth, focus),
        }
