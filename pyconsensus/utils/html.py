def _format_value(value):
    if isinstance(value, float):
        return f"{value:.2f}"
    return value


def _create_html_details(title, data):
    html_details = f"<details><summary><strong>{title}</strong></summary>"
    html_details += "<table>"
    for key, value in data.items():
        html_details += f"<tr><td>{key}</td><td>{_format_value(value)}</td></tr>"
    html_details += "</table></details>"
    return html_details
