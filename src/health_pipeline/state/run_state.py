"""
Pipeline run state management.

Records the last run and its per-stage outcomes in a JSON file so operators
can see where a run stopped before re-running it.
"""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

from health_pipeline.pipeline.models import PipelineRun

logger = logging.getLogger(__name__)


class RunStateManager:
    """Persists the state of the most recent pipeline run."""

    def __init__(self, state_file: str = ".pipeline_state.json"):
        self.state_file = state_file
        self.state = self._load_state()

    def _empty_state(self) -> Dict[str, Any]:
        return {
            "run_id": None,
            "pipeline_name": None,
            "created_at": None,
            "last_updated": None,
            "status": "never_run",
            "stages": [],
        }

    def _load_state(self) -> Dict[str, Any]:
        """Load run state from file."""
        if os.path.exists(self.state_file):
            try:
                with open(self.state_file, 'r') as f:
                    return json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Ignoring unreadable state file {self.state_file}: {e}")

        return self._empty_state()

    def save_state(self):
        """Save current state to file."""
        self.state["last_updated"] = datetime.utcnow().isoformat()

        try:
            with open(self.state_file, 'w') as f:
                json.dump(self.state, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not save state file: {e}")

    def start_run(self, run: PipelineRun):
        """Start tracking a new run."""
        self.state = self._empty_state()
        self.state["created_at"] = datetime.utcnow().isoformat()
        self.record(run)

    def record(self, run: PipelineRun):
        """Snapshot the run after a stage transition."""
        snapshot = run.to_dict()
        self.state.update({
            "run_id": snapshot["run_id"],
            "pipeline_name": snapshot["pipeline_name"],
            "status": snapshot["status"],
            "stages": snapshot["stages"],
        })
        self.save_state()

    def last_failed_stage(self) -> Optional[Dict[str, Any]]:
        for stage in self.state.get("stages", []):
            if stage.get("status") == "Failed":
                return stage
        return None

    def clear_state(self):
        """Clear all run state."""
        if os.path.exists(self.state_file):
            os.remove(self.state_file)
        self.state = self._load_state()
