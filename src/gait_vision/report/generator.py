"""
Gait Summary Generator
======================

Render a human-readable summary of one analysis with Jinja2 templates.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader

from ..models.scorer import ScoringResult
from ..pipeline.extractor import GaitDiagnostics
from ..pipeline.features import GaitFeatures

SUMMARY_TEMPLATE = """\
=== Gait Analysis Summary ===

Quality: {{ diagnostics.quality_flag.value }}
{% if diagnostics.rejection_reasons %}Issues: {{ diagnostics.rejection_reasons | join(", ") }}
{% endif %}
Video Info:
  Duration: {{ diagnostics.duration_s | format_number(1) }} s
  Frames: {{ diagnostics.num_frames_valid }}/{{ diagnostics.num_frames_total }} valid
  Detection rate: {{ (diagnostics.valid_frame_rate * 100) | int }}%
  Walking direction: {{ diagnostics.walking_direction }}{% if diagnostics.was_flipped %} (mirrored){% endif %}
{% if diagnostics.step_signal_mode %}  Step signal: {{ diagnostics.step_signal_mode }}
{% endif %}
{% if features %}
Gait Metrics:
  Cadence: {{ features.cadence_spm | format_number(1) }} steps/min
  Stride time: {{ features.stride_time_s | format_number(2) }} s
  Step asymmetry: {{ (features.step_time_asymmetry * 100) | format_number(1) }}%

Range of Motion:
  Knee (L/R): {{ features.knee_left_rom | format_number(1) }} / {{ features.knee_right_rom | format_number(1) }} deg
  Max knee flexion (L/R): {{ features.knee_left_max | format_number(1) }} / {{ features.knee_right_max | format_number(1) }} deg

Stability:
  Trunk lean std: {{ features.trunk_lean_std_deg | format_number(1) }} deg
  Inter-ankle CV: {{ features.inter_ankle_cv | format_number(2) }}
{% endif %}
{% if scores %}
Model Scores (100 = healthy):
{% for label, value in scores %}  {{ label }}: {{ value | format_number(0) }}/100
{% endfor %}
{% endif %}"""


class ReportGenerator:
    """Generate reports from templates."""

    def __init__(self, template_dir: str | Path | None = None):
        if template_dir is not None and Path(template_dir).exists():
            self.env = Environment(
                loader=FileSystemLoader(str(template_dir)),
                trim_blocks=True,
                lstrip_blocks=True,
            )
        else:
            self.env = Environment(trim_blocks=True, lstrip_blocks=True)

        # Register custom filters
        self.env.filters["format_number"] = self._format_number

    @staticmethod
    def _format_number(value: float, decimals: int = 3) -> str:
        """Format number with specified decimals."""
        if isinstance(value, (int, float)):
            if isinstance(value, float) and math.isnan(value):
                return "NaN"
            return f"{value:.{decimals}f}"
        return str(value)

    def render_template(self, template_name: str, context: dict[str, Any]) -> str:
        """Render a template with context."""
        template = self.env.get_template(template_name)
        return template.render(**context)

    def render_string(self, template_str: str, context: dict[str, Any]) -> str:
        """Render a template string with context."""
        template = self.env.from_string(template_str)
        return template.render(**context)

    def generate_summary(
        self,
        diagnostics: GaitDiagnostics,
        features: GaitFeatures | None = None,
        scoring: ScoringResult | None = None,
    ) -> str:
        """Plain-text summary of one analysis."""
        scores = []
        if scoring is not None:
            for label, value in (
                ("AE", scoring.ae_score),
                ("Ridge", scoring.ridge_score),
                ("PCA", scoring.pca_score),
            ):
                if value is not None:
                    scores.append((label, value))

        context = {
            "diagnostics": diagnostics,
            "features": features if features is not None and not features.is_empty else None,
            "scores": scores,
        }
        return self.render_string(SUMMARY_TEMPLATE, context)


def generate_summary(
    diagnostics: GaitDiagnostics,
    features: GaitFeatures | None = None,
    scoring: ScoringResult | None = None,
) -> str:
    """Convenience function to render a summary."""
    return ReportGenerator().generate_summary(diagnostics, features, scoring)
