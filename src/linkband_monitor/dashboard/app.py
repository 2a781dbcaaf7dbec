"""
Dash application for the LinkBand monitor.
"""

import concurrent.futures
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import dash  # type: ignore
from dash import ALL, Input, Output, State, ctx, dcc, html, no_update

from ..config import Settings
from ..device_service import DeviceSessionService
from ..errors import CommandResult, SessionError
from ..projections import (
    battery_tier,
    can_record,
    can_start_sensors,
    connection_status_text,
    data_status_text,
    is_pending_activation,
    pending_label,
    recent_sample_lines,
    recording_status_text,
    sampling_rate_label,
)
from ..sensors import ActiveScreen, DeviceDescriptor, SensorKind
from ..session import MonitorSession, SessionThread
from ..store import SessionSnapshot
from .plots import create_sensor_layout

logger = logging.getLogger(__name__)

PANEL_STYLE: Dict[str, str] = {
    "padding": "10px",
    "border": "1px solid #ddd",
    "borderRadius": "5px",
    "margin": "5px",
}

BUTTON_STYLE: Dict[str, str] = {
    "marginRight": "10px",
    "padding": "8px 16px",
    "border": "none",
    "borderRadius": "4px",
    "cursor": "pointer",
    "color": "white",
    "backgroundColor": "#007bff",
}

BATTERY_COLORS: Dict[str, str] = {
    "ok": "green",
    "low": "orange",
    "critical": "red",
}

RESULT_MESSAGES: Dict[CommandResult, str] = {
    CommandResult.NOTHING_SELECTED: "Select at least one sensor first",
    CommandResult.NOT_CONNECTED: "Connect a device before recording",
    CommandResult.NOT_COLLECTING: "Start the sensors before recording",
    CommandResult.NAVIGATION_REJECTED: "Screens change only on connect and disconnect",
}


def _shown(visible: bool) -> Dict[str, str]:
    return {**PANEL_STYLE, "display": "block" if visible else "none"}


def device_entries(devices: Sequence[DeviceDescriptor]) -> List[Any]:
    """Render the scanned device list with one connect button per device."""
    if not devices:
        return [html.Div("No devices found", style={"color": "gray"})]
    return [
        html.Div(
            [
                html.Span(device.display_name, style={"fontWeight": "bold"}),
                html.Span(f" ({device.address}) ", style={"color": "gray"}),
                html.Button(
                    "Connect",
                    id={"type": "connect-btn", "index": device.address},
                    n_clicks=0,
                    style=BUTTON_STYLE,
                ),
            ],
            style={"margin": "6px 0"},
        )
        for device in devices
    ]


def sensor_sections(snapshot: SessionSnapshot) -> List[Any]:
    """Per-sensor text panels for the data view.

    Started sensors show their most recent samples; selected sensors waiting
    for a collection show the animated pending label.
    """
    sections = []
    for kind in SensorKind:
        if kind not in snapshot.selected_sensors and kind not in snapshot.started_sensors:
            continue
        if is_pending_activation(snapshot, kind):
            body: List[Any] = [
                html.Div(pending_label(snapshot.indicator_dots), style={"color": "orange"})
            ]
        elif kind in snapshot.started_sensors and snapshot.collection_active:
            lines = recent_sample_lines(snapshot, kind)
            body = [html.Div(line) for line in lines] or [
                html.Div("Waiting for samples...", style={"color": "gray"})
            ]
        else:
            body = [html.Div("Not started", style={"color": "gray"})]
        sections.append(
            html.Div(
                [html.H4(sampling_rate_label(kind))] + body,
                id=f"sensor-section-{kind.value.lower()}",
                style={**PANEL_STYLE, "fontFamily": "monospace"},
            )
        )
    return sections


class MonitorDashboard:
    """Web front-end over a running :class:`MonitorSession`.

    Dash serves callbacks on its own threads. Reads take a store snapshot,
    which is safe from any thread; commands are sent to the session loop
    through the :class:`SessionThread` and waited on with the configured
    command timeout.

    Attributes:
        runner: Thread hosting the session loop.
        session: The monitor session.
        settings: Monitor settings.
        app: Dash application instance.
    """

    def __init__(self, runner: SessionThread):
        self.runner = runner
        self.session = runner.session
        self.settings: Settings = runner.session.settings
        self.app = dash.Dash(__name__, title="LinkBand Monitor")
        self._setup_layout()
        self._setup_callbacks()

    def _setup_layout(self) -> None:
        sensor_options = [
            {"label": sampling_rate_label(kind), "value": kind.value}
            for kind in SensorKind
        ]
        self.app.layout = html.Div(
            [
                html.H1("LinkBand Monitor", style={"textAlign": "center"}),
                # Scanner screen
                html.Div(
                    [
                        html.H3("Devices"),
                        html.Div(id="connection-status", children="Disconnected"),
                        html.Div(
                            [
                                html.Button("Start scan", id="scan-btn", style=BUTTON_STYLE),
                                html.Button(
                                    "Auto-reconnect: off",
                                    id="auto-reconnect-btn",
                                    style={**BUTTON_STYLE, "backgroundColor": "#6c757d"},
                                ),
                            ],
                            style={"margin": "10px 0"},
                        ),
                        html.Div(id="device-list"),
                        dcc.Store(id="device-list-key"),
                    ],
                    id="scanner-panel",
                    style=_shown(True),
                ),
                # Data screen
                html.Div(
                    [
                        html.Div(
                            [
                                html.H3(id="device-name", children=""),
                                html.Div(id="battery", children=""),
                                html.Div(id="data-status", children=""),
                                html.Div(id="recording-status", children=""),
                            ]
                        ),
                        html.Div(
                            [
                                html.Label("Sensors:", style={"fontWeight": "bold"}),
                                dcc.Checklist(
                                    id="sensor-checklist",
                                    options=sensor_options,
                                    value=[],
                                    inline=True,
                                    style={"margin": "5px 0"},
                                ),
                            ]
                        ),
                        html.Div(
                            [
                                html.Button("Start sensors", id="sensors-btn", style=BUTTON_STYLE),
                                html.Button(
                                    "Record",
                                    id="record-btn",
                                    disabled=True,
                                    style={**BUTTON_STYLE, "backgroundColor": "#dc3545"},
                                ),
                                html.Button(
                                    "Disconnect",
                                    id="disconnect-btn",
                                    style={**BUTTON_STYLE, "backgroundColor": "#6c757d"},
                                ),
                            ],
                            style={"margin": "10px 0"},
                        ),
                        html.Div(id="sensor-status"),
                        dcc.Graph(id="sensor-plot", config={"displayModeBar": False}),
                    ],
                    id="data-panel",
                    style=_shown(False),
                ),
                html.Div(id="command-status", style={"color": "#dc3545", "margin": "5px"}),
                dcc.Interval(
                    id="interval-component",
                    interval=self.settings.update_interval_ms,
                    n_intervals=0,
                ),
            ]
        )

    def _run(self, fn: Callable[..., CommandResult], *args: Any) -> str:
        """Run a session command and return the message to show for it."""
        try:
            result = self.runner.call(fn, *args)
        except (SessionError, concurrent.futures.TimeoutError) as e:
            logger.error("Command %s failed: %s", getattr(fn, "__name__", fn), e)
            return f"Command failed: {e}"
        return RESULT_MESSAGES.get(result, "")

    def _setup_callbacks(self) -> None:
        session = self.session

        @self.app.callback(  # type: ignore
            [
                Output("scanner-panel", "style"),
                Output("data-panel", "style"),
                Output("connection-status", "children"),
                Output("scan-btn", "children"),
                Output("scan-btn", "disabled"),
                Output("auto-reconnect-btn", "children"),
                Output("device-name", "children"),
                Output("battery", "children"),
                Output("battery", "style"),
                Output("data-status", "children"),
                Output("recording-status", "children"),
                Output("sensors-btn", "children"),
                Output("sensors-btn", "disabled"),
                Output("record-btn", "children"),
                Output("record-btn", "disabled"),
                Output("sensor-status", "children"),
                Output("sensor-plot", "figure"),
            ],
            [Input("interval-component", "n_intervals")],
        )
        def update_view(n_intervals: int) -> Tuple[Any, ...]:
            snapshot = session.store.snapshot()
            on_data_view = snapshot.active_screen is ActiveScreen.DATA_VIEW

            tier = battery_tier(snapshot.battery_level)
            if tier is None:
                battery_text, battery_style = "Battery: --", {"color": "gray"}
            else:
                battery_text = f"Battery: {snapshot.battery_level}%"
                battery_style = {"color": BATTERY_COLORS[tier], "fontWeight": "bold"}

            if on_data_view:
                started = [k for k in SensorKind if k in snapshot.started_sensors]
                figure = create_sensor_layout(
                    {
                        k: session.service.buffer(k).get_recent(self.settings.plot_window)
                        for k in started
                    },
                    started,
                )
            else:
                figure = no_update

            return (
                _shown(not on_data_view),
                _shown(on_data_view),
                connection_status_text(snapshot),
                "Stop scan" if snapshot.scanning else "Start scan",
                snapshot.connected,
                "Auto-reconnect: " + ("on" if snapshot.auto_reconnect_enabled else "off"),
                snapshot.connected_device_name or "Unknown device",
                battery_text,
                battery_style,
                data_status_text(snapshot),
                recording_status_text(snapshot),
                "Stop sensors" if snapshot.collection_active else "Start sensors",
                not snapshot.collection_active and not can_start_sensors(snapshot),
                "Stop recording" if snapshot.recording else "Record",
                not snapshot.recording and not can_record(snapshot),
                sensor_sections(snapshot),
                figure,
            )

        @self.app.callback(  # type: ignore
            [Output("device-list", "children"), Output("device-list-key", "data")],
            [Input("interval-component", "n_intervals")],
            [State("device-list-key", "data")],
        )
        def update_devices(n_intervals: int, rendered: Optional[List[str]]):  # type: ignore
            devices = session.store.get("scanned_devices")
            key = [d.address for d in devices]
            if key == rendered:
                return no_update, no_update
            return device_entries(devices), key

        # Both directions in one callback keep the checklist and the store in step
        @self.app.callback(  # type: ignore
            Output("sensor-checklist", "value"),
            [Input("sensor-checklist", "value"), Input("interval-component", "n_intervals")],
        )
        def sync_selection(value: Optional[List[str]], n_intervals: int):  # type: ignore
            selected = session.store.get("selected_sensors")
            if ctx.triggered_id == "sensor-checklist":
                wanted = {SensorKind.parse(v) for v in value or []}
                for kind in SensorKind:
                    if (kind in wanted) != (kind in selected):
                        self._run(session.set_sensor_selected, kind, kind in wanted)
                return no_update
            current = [k.value for k in SensorKind if k in selected]
            if sorted(value or []) == sorted(current):
                return no_update
            return current

        @self.app.callback(  # type: ignore
            Output("command-status", "children"),
            [Input("scan-btn", "n_clicks")],
            prevent_initial_call=True,
        )
        def toggle_scan(n_clicks: int):  # type: ignore
            if not n_clicks:
                return no_update
            return self._run(session.toggle_scan)

        @self.app.callback(  # type: ignore
            Output("command-status", "children", allow_duplicate=True),
            [Input({"type": "connect-btn", "index": ALL}, "n_clicks")],
            prevent_initial_call=True,
        )
        def connect(n_clicks: List[Optional[int]]):  # type: ignore
            # Re-rendered buttons also trigger this callback with n_clicks=0
            triggered = ctx.triggered_id
            if not triggered or not ctx.triggered[0]["value"]:
                return no_update
            return self._run(session.connect, triggered["index"])

        @self.app.callback(  # type: ignore
            Output("command-status", "children", allow_duplicate=True),
            [Input("auto-reconnect-btn", "n_clicks")],
            prevent_initial_call=True,
        )
        def toggle_auto_reconnect(n_clicks: int):  # type: ignore
            if not n_clicks:
                return no_update
            enabled = session.store.get("auto_reconnect_enabled")
            return self._run(session.set_auto_reconnect, not enabled)

        @self.app.callback(  # type: ignore
            Output("command-status", "children", allow_duplicate=True),
            [Input("sensors-btn", "n_clicks")],
            prevent_initial_call=True,
        )
        def toggle_sensors(n_clicks: int):  # type: ignore
            if not n_clicks:
                return no_update
            return self._run(session.toggle_sensors)

        @self.app.callback(  # type: ignore
            Output("command-status", "children", allow_duplicate=True),
            [Input("record-btn", "n_clicks")],
            prevent_initial_call=True,
        )
        def toggle_recording(n_clicks: int):  # type: ignore
            if not n_clicks:
                return no_update
            return self._run(session.toggle_recording)

        @self.app.callback(  # type: ignore
            Output("command-status", "children", allow_duplicate=True),
            [Input("disconnect-btn", "n_clicks")],
            prevent_initial_call=True,
        )
        def disconnect(n_clicks: int):  # type: ignore
            if not n_clicks:
                return no_update
            return self._run(session.disconnect)

    def run(self, host: Optional[str] = None, port: Optional[int] = None, debug: bool = False) -> None:
        """Start the session thread and serve the dashboard until interrupted.

        The session is disposed and the device service closed when the web
        server stops.
        """
        self.runner.start()
        try:
            self.app.run(
                host=host or self.settings.host,
                port=port or self.settings.port,
                debug=debug,
            )
        finally:
            self.runner.stop()


def create_app(service: DeviceSessionService, settings: Optional[Settings] = None) -> MonitorDashboard:
    """Factory function to create a dashboard over a new monitor session.

    Args:
        service: Device session service (BLE or mock).
        settings: Monitor settings; defaults are used when omitted.

    Returns:
        MonitorDashboard instance; call ``run()`` to serve it.
    """
    session = MonitorSession(service, settings)
    return MonitorDashboard(SessionThread(session))
