"""Reverse-proxy configuration rendering.

The proxy container (Caddy) terminates TLS for the public domain and routes
requests to the public services by path prefix. This module turns the public
services of a parameter set into a Caddyfile.

Routing rules:
    - Longest prefix first, so ``/api/admin`` wins over ``/api``.
    - A non-root prefix gets a named path matcher covering both the bare
      prefix and everything below it; ``uri strip_prefix`` removes the
      prefix before forwarding.
    - The service mounted at ``/`` becomes the fallback ``handle`` block.
    - Without a domain the site listens on plain ``:80`` (no ACME).

Example::

    example.com {
        @api path /api /api/*
        handle @api {
            uri strip_prefix /api
            reverse_proxy api:8000
        }
        handle {
            reverse_proxy web:3000
        }
    }

Tags:
    proxy, caddy, reverse-proxy, tls, routing
"""

from __future__ import annotations

from convoy.core.errors import ProxyConfigError
from convoy.params import BlueprintParams


def render_caddyfile(params: BlueprintParams) -> str:
    """Render the Caddyfile for the public services in ``params``.

    Raises
    ------
    ProxyConfigError
        If there are no public services, or two share a path prefix.
    """
    public = params.public_services()
    if not public:
        raise ProxyConfigError(
            "Reverse proxy is enabled but no service is marked public"
        )

    prefixes: dict[str, str] = {}
    for svc in public:
        if svc.path_prefix in prefixes:
            raise ProxyConfigError(
                f"Services {prefixes[svc.path_prefix]!r} and {svc.name!r} "
                f"share path prefix {svc.path_prefix!r}"
            )
        prefixes[svc.path_prefix] = svc.name

    lines: list[str] = []
    if params.proxy.acme_email:
        lines += ["{", f"    email {params.proxy.acme_email}", "}", ""]

    site = params.proxy.domain or ":80"
    lines.append(f"{site} {{")
    lines.append("    encode gzip")

    ordered = sorted(public, key=lambda s: len(s.path_prefix), reverse=True)
    for svc in ordered:
        upstream = f"{svc.name}:{svc.port}"
        if svc.path_prefix == "/":
            lines += [
                "    handle {",
                f"        reverse_proxy {upstream}",
                "    }",
            ]
        else:
            prefix = svc.path_prefix
            lines += [
                f"    @{svc.name} path {prefix} {prefix}/*",
                f"    handle @{svc.name} {{",
                f"        uri strip_prefix {prefix}",
                f"        reverse_proxy {upstream}",
                "    }",
            ]

    if "/" not in prefixes:
        lines += [
            "    handle {",
            '        respond "not found" 404',
            "    }",
        ]

    lines.append("}")
    return "\n".join(lines) + "\n"
