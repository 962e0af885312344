import csv
import json

import ForkGrad.core.backend.backend as backend


class GradientRecorder:
    """
    Debug recorder of the gradients produced during backward passes.

    Nodes created with `recorder=...` report every backward step as
    `(operation name, input gradients)`. Recording is off unless `enabled`
    (config key `record_gradients`) or inside a `recording(...)` block.
    Each entry keeps the gradients as a `Tensor.print_code` text dump so
    entries stay valid after the tensors are mutated.

    Attributes:
        enabled (bool): Whether `record` stores anything.
        records (list[dict]): Entries with "step", "operation" and
            "gradients" keys.
    """
    def __init__(self, enabled=None):
        self.enabled = backend.RECORD_GRADIENTS if enabled is None else bool(enabled)
        self.records = []

    def __len__(self):
        return len(self.records)

    def __repr__(self):
        return f"GradientRecorder(enabled={self.enabled}, records={len(self.records)})"

    def record(self, name, gradients):
        """Store one backward step. No-op while disabled."""
        if not self.enabled:
            return
        text = "\n\n".join(t.print_code(4) for t in gradients)
        self.records.append({"step": len(self.records), "operation": name, "gradients": text})

    def snapshot(self):
        """Copy of the entries recorded so far."""
        return [dict(entry) for entry in self.records]

    def clear(self):
        self.records.clear()

    # -------------------------------
    # Export
    # -------------------------------
    def to_json(self, filepath):
        """Save all recorded entries to a JSON file."""
        with open(filepath, "w") as f:
            json.dump(self.records, f, indent=4)

    def to_csv(self, filepath):
        """Save recorded entries to CSV, one row per backward step."""
        with open(filepath, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=["step", "operation", "gradients"])
            writer.writeheader()
            writer.writerows(self.records)
