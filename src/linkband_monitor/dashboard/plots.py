"""
Plot components for the sensor data view.
"""

from typing import Dict, List, Optional, Sequence

import plotly.graph_objects as go  # type: ignore
from plotly.subplots import make_subplots  # type: ignore

from ..projections import sampling_rate_label
from ..sensors import CHANNELS, SensorKind, SensorSample

# Axis title and trace colors per sensor
AXIS_TITLES: Dict[SensorKind, str] = {
    SensorKind.EEG: "Amplitude (µV)",
    SensorKind.PPG: "Intensity",
    SensorKind.ACC: "Acceleration (g)",
}

TRACE_COLORS: Dict[str, str] = {
    "ch1": "royalblue",
    "ch2": "darkorange",
    "red": "crimson",
    "ir": "purple",
    "x": "red",
    "y": "green",
    "z": "blue",
}

# lead_off is a status flag, not a signal
PLOTTED_CHANNELS: Dict[SensorKind, tuple] = {
    SensorKind.EEG: ("ch1", "ch2"),
    SensorKind.PPG: ("red", "ir"),
    SensorKind.ACC: ("x", "y", "z"),
}


def decoded(samples: Sequence[SensorSample]) -> List[SensorSample]:
    """Drop samples whose values do not match the sensor's channel layout."""
    return [s for s in samples if len(s.values) == len(CHANNELS[s.kind])]


def _no_data(fig: go.Figure, text: str = "No data available", row: Optional[int] = None) -> None:
    if row is None:
        xref, yref, size = "paper", "paper", 16
    else:
        # Single-column subplots number their axes x, x2, x3, ...
        suffix = "" if row == 1 else str(row)
        xref, yref, size = f"x{suffix} domain", f"y{suffix} domain", 14
    fig.add_annotation(
        x=0.5,
        y=0.5,
        text=text,
        showarrow=False,
        xref=xref,
        yref=yref,
        font=dict(size=size, color="gray"),
    )


def _traces(kind: SensorKind, samples: Sequence[SensorSample]) -> List[go.Scatter]:
    t0 = samples[0].timestamp_ms
    timestamps = [(s.timestamp_ms - t0) / 1000.0 for s in samples]
    names = CHANNELS[kind]
    traces = []
    for channel in PLOTTED_CHANNELS[kind]:
        idx = names.index(channel)
        traces.append(
            go.Scatter(
                x=timestamps,
                y=[s.values[idx] for s in samples],
                mode="lines",
                name=f"{kind.value} {channel}",
                line=dict(color=TRACE_COLORS[channel], width=1.5),
            )
        )
    return traces


def create_sensor_layout(
    samples: Dict[SensorKind, Sequence[SensorSample]],
    kinds: Optional[Sequence[SensorKind]] = None,
) -> go.Figure:
    """Stack one subplot per sensor, sharing the time axis title.

    Args:
        samples: Recent samples per sensor.
        kinds: Sensors to show, in order. Defaults to every sensor kind.
    """
    kinds = list(kinds) if kinds is not None else list(SensorKind)
    if not kinds:
        fig = go.Figure()
        _no_data(fig, "No sensors streaming")
        fig.update_layout(height=300)
        return fig

    fig = make_subplots(
        rows=len(kinds),
        cols=1,
        subplot_titles=[sampling_rate_label(k) for k in kinds],
        vertical_spacing=0.12 if len(kinds) > 1 else 0.0,
    )

    for row, kind in enumerate(kinds, start=1):
        data = decoded(samples.get(kind, ()))
        if not data:
            _no_data(fig, row=row)
        else:
            for trace in _traces(kind, data):
                fig.add_trace(trace, row=row, col=1)
        fig.update_yaxes(title_text=AXIS_TITLES[kind], row=row, col=1)
        if kind is SensorKind.ACC:
            fig.update_yaxes(range=[-2, 2], row=row, col=1)

    fig.update_xaxes(title_text="Time (seconds)", row=len(kinds), col=1)
    fig.update_layout(
        height=280 * len(kinds),
        showlegend=True,
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
        margin=dict(l=50, r=50, t=80, b=50),
    )
    return fig
