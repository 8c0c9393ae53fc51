from datetime import datetime

from models.schemas import AllowList, RenderMetadata, TargetKind
from pipeline.renderers import ApacheRenderer, NginxRenderer, renderer_for

META = RenderMetadata(source_url="https://feed.example/ips.txt", timestamp=datetime(2026, 1, 2, 3, 4, 5))
ALLOW = AllowList(entries=["192.0.64.0/18", "1.2.3.4"])


def test_apache_block_layout():
    text = ApacheRenderer().render(ALLOW, META)

    assert text.splitlines() == [
        "# BEGIN Whitelist XML-RPC",
        "# Whitelist IPs for xmlrpc.php access",
        "# Source: https://feed.example/ips.txt",
        "# Last updated: 2026-01-02 03:04:05",
        '<Files "xmlrpc.php">',
        "    <RequireAny>",
        "        Require ip 192.0.64.0/18",
        "        Require ip 1.2.3.4",
        "    </RequireAny>",
        '    ErrorDocument 403 "Forbidden"',
        "</Files>",
        "# END Whitelist XML-RPC",
    ]


def test_nginx_block_layout():
    text = NginxRenderer(marker="Custom").render(ALLOW, META)
    lines = text.splitlines()

    assert lines[0] == "# BEGIN Custom"
    assert lines[-1] == "# END Custom"
    assert "location = /xmlrpc.php {" in lines
    assert "    allow 192.0.64.0/18;" in lines
    assert "    allow 1.2.3.4;" in lines
    assert lines.index("    deny all;") > lines.index("    allow 1.2.3.4;")


def test_render_is_deterministic_except_timestamp():
    later = RenderMetadata(source_url=META.source_url, timestamp=datetime(2027, 6, 1, 0, 0, 0))
    renderer = ApacheRenderer()

    assert renderer.render(ALLOW, META) == renderer.render(ALLOW, META)
    first = [line for line in renderer.render(ALLOW, META).splitlines() if not line.startswith("# Last updated")]
    second = [line for line in renderer.render(ALLOW, later).splitlines() if not line.startswith("# Last updated")]
    assert first == second


def test_empty_allow_list_renders_nothing():
    assert ApacheRenderer().render(AllowList(), META) == ""
    assert ApacheRenderer().render_lines(AllowList(), META) == []


def test_renderer_selection_defaults_to_apache():
    assert isinstance(renderer_for(TargetKind.NGINX), NginxRenderer)
    assert isinstance(renderer_for(TargetKind.APACHE), ApacheRenderer)
    assert isinstance(renderer_for(TargetKind.UNKNOWN), ApacheRenderer)
