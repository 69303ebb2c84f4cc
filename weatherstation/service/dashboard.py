"""
HTML overview page served at ``/``.

One card per sensor showing address, label and latest values. Clicking a
label edits it, the forget button drops the sensor; both go through the
JSON API via the small script served at ``/static/script.js``.
"""

from html import escape
from typing import Iterable, Optional, Tuple

from ..ble.address import BluetoothAddress
from ..sensor import SensorState


SensorRow = Tuple[BluetoothAddress, Optional[str], SensorState]

PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Weatherstations</title>
<style>
body {{ font-family: sans-serif; margin: 2em; }}
.sensor {{ border: 1px solid #ccc; border-radius: 4px; padding: 0.5em 1em; margin-bottom: 1em; }}
.label {{ cursor: pointer; font-weight: bold; }}
.unconnected {{ color: #888; }}
</style>
<script src="/static/script.js" defer></script>
</head>
<body>
<h1>Weatherstations</h1>
{body}
</body>
</html>
"""

SCRIPT = """\
async function send(method, endpoint, body, failure) {
    const response = await fetch(endpoint, {
        method,
        headers: {"Content-Type": "application/json"},
        body: JSON.stringify(body),
    });
    if (response.ok) {
        location.reload();
    } else {
        alert(failure);
    }
}

window.addEventListener("load", () => {
    for (const sensor of document.querySelectorAll(".sensor")) {
        const addr = sensor.dataset.addr;
        const label = sensor.querySelector(".label");
        label.addEventListener("click", () => {
            const current = label.dataset.label || "";
            const next = prompt(`Label for ${addr}`, current);
            if (next !== null) {
                send("PUT", "/api/change_label", {addr, new_label: next}, "Could not change label");
            }
        });
        sensor.querySelector(".forget").addEventListener("click", () => {
            if (confirm(`Forget sensor ${addr}?`)) {
                send("DELETE", "/api/forget", {addr}, `Failed forgetting ${addr}`);
            }
        });
    }
});
"""


def render_sensor(addr: BluetoothAddress, label: Optional[str], state: SensorState) -> str:
    shown_label = escape(label) if label else "<em>unnamed</em>"
    if state.is_connected:
        values = state.values
        readings = (
            f"<li>Temperature: {values.temperature}</li>"
            f"<li>Humidity: {values.humidity}</li>"
            f"<li>Pressure: {values.pressure}</li>"
        )
        status = f'<ul class="values">{readings}</ul>'
    else:
        status = '<p class="unconnected">Unconnected</p>'

    return (
        f'<div class="sensor" data-addr="{addr}">'
        f'<p><span class="label" data-label="{escape(label or "")}">{shown_label}</span>'
        f' <span class="addr">{addr}</span></p>'
        f'{status}'
        f'<button class="forget">Forget</button>'
        f'</div>'
    )


def render_home(rows: Iterable[SensorRow]) -> str:
    cards = [render_sensor(addr, label, state) for addr, label, state in rows]
    body = "\n".join(cards) if cards else "<p>No sensors seen yet.</p>"
    return PAGE.format(body=body)
