# hitcounter

A web service that counts visits to web pages and returns the counts as SVG
badges. Each counting request records a hit for the page named in its `url`
query parameter. Counts are kept per day and in total in Redis. The service
also keeps rankings of the most visited domains, GitHub projects and GitHub
profiles, and draws a graph of a page's daily hits over the last two months.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Running the server

```
hitcounter --addr :8080
```

| Option   | Meaning                                                        |
|----------|----------------------------------------------------------------|
| `--addr` | `host:port` to listen on. Defaults to `:8080` (all interfaces). |
| `--tls`  | Serve over TLS. Needs `--cert` and `--key`.                    |
| `--cert` | Certificate chain file for TLS.                                |
| `--key`  | Private key file for TLS.                                      |

The server is configured through environment variables, read once per process
(`hitcounter.settings.get_settings`):

| Variable      | Meaning                                                                  |
|---------------|--------------------------------------------------------------------------|
| `REDIS_ADDRS` | Comma-separated Redis addresses (`host:port`). The first one is used. Required. |
| `DEBUG`       | Boolean debug flag.                                                      |
| `FORCE_HTTPS` | Boolean. Redirects plain HTTP to HTTPS and adds an HSTS header.          |
| `LOG_PATH`    | File the JSON request log is appended to. Without it the log goes to standard output. |
| `SENTRY_DSN`  | DSN of the error collection endpoint (`scheme://key@host/project`).      |
| `PHASE`       | Deployment phase. `local` selects the `local.html` page template and logs every request. |

Booleans accept `1`, `t`, `T`, `TRUE`, `true`, `True` and `0`, `f`, `F`,
`FALSE`, `false`, `False`; any other value raises `ValueError` at start-up.
Error reporting is switched on only when `SENTRY_DSN` and `PHASE` are both set
and the DSN is valid; otherwise a warning is logged and the server runs without
it.

## Endpoints

| Path                                     | What it returns                                         |
|------------------------------------------|---------------------------------------------------------|
| `/api/count/incr/badge.svg?url=...`      | Records a hit and returns the badge.                    |
| `/api/count/keep/badge.svg?url=...`      | Returns the badge without recording a hit.              |
| `/api/count/graph/dailyhits.svg?url=...` | SVG area chart of the daily hits, one point per day from 60 days ago to today. |
| `/icon/all.json`                         | List of `{"name", "url"}` for every badge icon.         |
| `/icon/{icon}`                           | The SVG of one icon, or 404.                            |
| `/ws`                                    | WebSocket that receives `[YYYY-MM-DD hh:mm:ss] <host><path>` for every recorded hit. |
| `/healthcheck`                           | `health check!`                                         |
| `/hits.wasm`                             | `view/hits.wasm`, sent with `Content-Encoding: gzip`.   |
| `/static/...`                            | Files from the `public` directory, when it exists.      |
| `/`                                      | Index page listing up to ten most visited `github.com/<profile>/<project>` pages. |

The `url` parameter is required and must be an `http` or `https` address; if
the scheme is left out, `http` is assumed. A missing, unparsable or
non-HTTP `url` gets an empty `400 Bad Request`. Other failures get an empty
response with the error's status, or 500.

Every response passes through a middleware chain that removes trailing
slashes, redirects `www.` hosts to the bare host, issues a `ckid` cookie
(valid 24 hours) when the client has none, applies a 15-second request
timeout (except for WebSockets) and writes a JSON log line for errors.

### Badge options

| Parameter    | Default    | Effect                                   |
|--------------|------------|------------------------------------------|
| `title`      | `hits`     | Text on the left half of the badge.      |
| `title_bg`   | `#555`     | Background colour of the left half.      |
| `count_bg`   | `#79c83d`  | Background colour of the right half.     |
| `edge_flat`  | `false`    | Square corners instead of rounded ones.  |
| `icon`       | none       | Name of an icon from `/icon/all.json`.   |
| `icon_color` | none       | Fill colour applied to the icon.         |

The right half of the badge reads ` <today> / <total> `.

### Limits on counting

- A hit from the same IP address and user agent is counted at most once per
  second.
- An address that makes more than 100 counting requests within five seconds
  still gets badges, but its hits are not counted.

Counted hits on `github.com` raise the page's rank in the `github.com` group
and the profile's rank in `github.com-profile-sum`; every counted hit raises
its domain in the `domain` group. Rankings are updated by background workers.

## Using it as a library

- `hitcounter.counter.Counter` — async Redis-backed counts and rankings
  (`increase_hit_of_daily`, `get_hit_of_daily_and_total`,
  `get_rank_total_by_limit`, …), returning `Score(name, value)`.
- `hitcounter.badge` — `generate_badge` and `BadgeWriter.render_flat_badge` /
  `render_icon_badge`; `load_icons` reads `*.svg` files from a directory.
- `hitcounter.handler.create_handler(redis_addr, root, phase, icons_dir)` —
  builds the shared `Handler` services.
- `hitcounter.api.ApiHandler` and `render_daily_hits_svg` — the counting and
  graph endpoints.
- `hitcounter.app` — `create_app`, `add_middleware`, `add_route`,
  `count_params_middleware` and `main`.
- `hitcounter.timefmt`, `hitcounter.util.parse_url`, `hitcounter.logger.new_logger`
  and `hitcounter.reporting` — supporting helpers.

## What is not included

The package ships no web assets. `create_handler` loads the page template from
`<root>/view/index.html` (or `local.html` when the phase is `local`) and fails
with `jinja2.TemplateNotFound` when it is missing; icons come from
`<root>/icons`, the wasm bundle from `<root>/view/hits.wasm` and static files
from `<root>/public`. The `hitcounter` command uses the installed package
directory as `<root>`, so these files must be placed there before it will
start. Without icons, `/icon/all.json` is an empty list and badges have no
icon.