# aegisfw

A host firewall toolkit in Python. It covers four areas:

- **Rules** — a rule model, a TOML rules parser with validation, a
  first-match rule engine, and a compiler that turns rules into an nftables
  JSON ruleset.
- **Rule file watching** — a watcher that signals when the rules file changes.
- **Detection** — an IP packet decoder, a flow table, seven detectors and an
  engine that combines their scores into a block / monitor / allow verdict.
- **Storage** — SQLite event storage with de-duplication, per-IP statistics,
  a bounded in-memory event buffer and an HMAC-chained audit log.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

Dependencies: `cryptography` (Argon2id key derivation in `DbKey.derive`) and
`watchdog` (file watching).

## Rules

### Model (`aegisfw.rules_model`)

- `Rule(id, priority, name, action, enabled=True, matches=[], log=False)` —
  lower `priority` is evaluated first. `Rule.default_allow()` gives an enabled
  allow-all rule with a random UUID id and priority 100.
- `Action(kind, rate_limit=None)` — `kind` is an `ActionKind`: `ALLOW`,
  `BLOCK`, `REJECT`, `LOG` or `RATE_LIMIT`. A `RATE_LIMIT` action requires a
  `RateLimitPolicy`; other kinds refuse one.
- `RateLimitPolicy(rate=100, burst=200, unit=PACKETS, scope=PER_SRC_IP,
  on_exceed=DROP)`, using `RateLimitUnit`, `RateLimitScope` and
  `ExceedAction`.
- `Match(kind, value)` — `kind` is a `MatchKind`: `SRC_IP`, `DST_IP`
  (a network; strings such as `"192.168.1.0/24"` are converted), `SRC_PORT`,
  `DST_PORT` (a `PortRange`; plain integers are converted), `PROTOCOL`
  (`Protocol`: `TCP`, `UDP`, `ICMP`, `ANY`) or `DIRECTION` (`Direction`:
  `INBOUND`, `OUTBOUND`, `FORWARD`).
- `PortRange(start, end=None)` — a single port when `end` is None, otherwise
  inclusive. `PortRange.single(port)`, `contains(port)` and `port in range`.
- `PacketInfo(src_ip, dst_ip, src_port, dst_port, protocol, direction)` — the
  fields the rule engine matches on; addresses may be given as strings.
- `BlockReason(code, description)`.

### TOML format (`aegisfw.parser`)

```toml
[[rules]]
id = "ssh-allow"
priority = 10
name = "Allow SSH"
action = { type = "allow" }

  [[rules.matches]]
  type = "src_ip"
  value = "192.168.1.0/24"

  [[rules.matches]]
  type = "dst_port"
  value = 22

  [[rules.matches]]
  type = "protocol"
  value = "tcp"

[[rules]]
id = "http-limit"
priority = 50
name = "Rate limit HTTP"
log = true

  [rules.action]
  type = "rate_limit"
  rate = 100
  burst = 200
  unit = "packets"
  scope = "per_src_ip"
  on_exceed = "drop"
```

A port range is written as a table: `value = { start = 8000, end = 8999 }`.
`enabled` defaults to true, `log` to false, `matches` to empty.

- `parse_rules_toml(text)` returns the rules sorted by ascending priority.
- `parse_rules_file(path)` reads the file first; an unreadable file raises
  `RulesFileNotFound`.
- `rule_from_dict(table)` builds one rule from a decoded TOML table.

Errors, all subclasses of `aegisfw.errors.RulesError`:

- `RulesParseError` — invalid TOML, a missing or mistyped field, an unknown
  action or match type, or an out-of-range value.
- `RulesValidationError` — a priority above 65535 or an empty name.
- `RulesConflictError` — a repeated rule id.

### Evaluation (`aegisfw.rule_engine`)

```python
from aegisfw.parser import parse_rules_file
from aegisfw.rule_engine import RuleEngine
from aegisfw.rules_model import Direction, PacketInfo, Protocol

engine = RuleEngine(parse_rules_file("rules.toml"))
packet = PacketInfo("10.0.0.1", "10.0.0.2", 12345, 22, Protocol.TCP, Direction.INBOUND)
verdict = engine.evaluate(packet)   # None when no rule matches
if verdict is not None:
    print(verdict.action.kind, verdict.rule_id, verdict.log)
```

All conditions of a rule must hold. Disabled rules are skipped. A
`PROTOCOL` match of `ANY` matches every packet; a port match never matches a
packet without that port.

### Compiling to nftables (`aegisfw.compiler`)

```python
from aegisfw.compiler import compile_rules

ruleset = compile_rules(rules, "v1")
print(ruleset.version)
print(ruleset.nftables_json)
```

The document flushes the ruleset, creates an `inet` table `aegis` with an
`input` filter chain (hook `input`, priority 0, policy `accept`), and adds
one rule per enabled rule, commented with the rule id. Compiled conditions:
destination port (as a `tcp dport` match), source and destination network,
and protocol `tcp` or `udp`. Direction, source port and other protocols are
left out. Verdicts: `allow` → `accept`, `block` → `drop`, `reject` →
`reject` with TCP reset; `log` and `rate_limit` compile to `accept`. A rule
with `log = true` gets a `log` statement with prefix `[aegis:<id>] ` before
its verdict.

### Watching the rules file (`aegisfw.watcher`)

```python
from aegisfw.watcher import RulesWatcher

with RulesWatcher("rules.toml") as watcher:
    while True:
        if watcher.wait(timeout=5.0):
            rules = parse_rules_file(watcher.path)
```

`wait` returns True once the file is created, modified or moved into place,
False if the timeout passes first. Several changes between calls collapse
into one signal. A path that does not exist raises `WatcherError`.

## Detection

### Packets and flows

- `aegisfw.decoder.decode_ip_packet(raw, direction)` decodes a raw IPv4 or
  IPv6 packet (no Ethernet header) carrying TCP, UDP or ICMP/ICMPv6 into a
  `DecodedPacket`. IPv6 extension headers are skipped. Malformed packets,
  fragments and other transport protocols raise `DecodeError`.
- `aegisfw.detection_model` holds `TcpFlags`, `DecodedPacket`, `FlowKey`,
  `FlowState` (SYN/ACK/RST/FIN counters and a payload buffer capped at
  64 KiB), `DetectionContext`, `DetectorResult`, `DetectionEvent`,
  `DetectionVerdict`, `VerdictAction` and the abstract `Detector`.
- `aegisfw.flow_table.FlowTable(max_capacity=500_000, time_to_idle=120.0)`
  maps flow keys to shared `FlowState` objects, evicting the least recently
  used beyond capacity and expiring flows idle for `time_to_idle` seconds.

### Detectors

| Class | Module | Weight | Fires on | Score |
|---|---|---|---|---|
| `PortScanDetector(window_secs=60, threshold=20)` | `aegisfw.port_scan` | 1.5 | a source reaching `threshold` distinct destination ports within the window | 80 |
| `SynFloodDetector(syn_ratio_threshold=3.0, min_syn_count=10)` | `aegisfw.syn_flood` | 2.0 | a flow with at least `min_syn_count` SYNs and SYN/(ACK+1) at or above the ratio | 90 |
| `RateLimiter(rate=1000.0, capacity=2000.0)` | `aegisfw.rate_limiter` | 1.0 | a source out of tokens in its per-source token bucket | 60 |
| `IpReputationDetector()` | `aegisfw.ip_reputation` | 1.5 | a source address on the block list | 100 |
| `GeoBlockDetector(db_path=None, countries=())` | `aegisfw.geo_block` | 1.0 | a source address in a blocked country | 75 |
| `ProtocolAnomalyDetector()` | `aegisfw.protocol_anomaly` | 1.2 | TCP Xmas (75), SYN+RST (70), SYN+FIN (70) or null flags (60) | 60–75 |
| `DpiDetector(patterns)` | `aegisfw.dpi` | 1.8 | a known byte pattern in the flow's payload buffer | 85 |

- `IpReputationDetector.swap_blocklist(ips)` replaces the list;
  `load_from_str(text)` reads one address per line and skips lines that are
  not addresses.
- `GeoBlockDetector` reads a MaxMind-format country database itself. Without
  a path, or if the file is missing or unreadable, lookups are off and every
  packet passes; `enabled` tells which.
- `DpiDetector` takes `(label, pattern)` pairs; `DpiDetector.from_toml(text)`
  reads `[[patterns]]` tables with `label` and `pattern`, raising
  `ValueError` on a bad document. `pattern_count()` gives the number loaded.

### Engine (`aegisfw.detection_engine`)

```python
from aegisfw.decoder import decode_ip_packet
from aegisfw.detection_engine import DetectionEngine, EngineConfig
from aegisfw.port_scan import PortScanDetector
from aegisfw.rules_model import Direction
from aegisfw.syn_flood import SynFloodDetector

engine = DetectionEngine([PortScanDetector(60, 20), SynFloodDetector()], EngineConfig())
packet = decode_ip_packet(raw_bytes, Direction.INBOUND)
verdict = engine.process_packet(packet)
print(verdict.action, verdict.final_score, verdict.events)
```

For each packet the engine updates the flow's counters and payload buffer,
runs every detector on a snapshot of the flow, and takes the weighted
average of their scores, capped at 100. With `EngineConfig` defaults a score
of 70 or more gives `VerdictAction.BLOCK`, 40 or more `MONITOR`, otherwise
`ALLOW`. Detectors run one after another in the calling thread.

## Storage

### Opening the database (`aegisfw.db`)

```python
from aegisfw.db import DbKey, open_database

conn = open_database("aegis.db", DbKey.random())
```

`open_database` returns a `sqlite3.Connection` in WAL mode with foreign keys
on. It issues `PRAGMA key` with the key, which only encrypts on a SQLCipher
build of SQLite; the standard `sqlite3` module ignores it, so the file is
**not** encrypted there. `DbKey.derive(machine_secret, domain_salt)` derives
a 32-byte key with Argon2id (64 MiB, 3 passes, 4 lanes); `DbKey.random()` is
for tests.

### Schema

The package does not create or migrate tables. Create them before use; the
code reads and writes these columns (`ip_stats.ip` must be unique for the
upsert):

```sql
CREATE TABLE events (
    id INTEGER PRIMARY KEY, ts INTEGER NOT NULL, severity TEXT NOT NULL,
    kind TEXT NOT NULL, src_ip TEXT NOT NULL, dst_ip TEXT NOT NULL,
    src_port INTEGER, dst_port INTEGER, protocol TEXT, rule_id TEXT,
    detector TEXT, score INTEGER, hit_count INTEGER NOT NULL,
    first_seen INTEGER NOT NULL, last_seen INTEGER NOT NULL,
    reason_code TEXT, reason_desc TEXT, raw_meta TEXT
);
CREATE TABLE audit_log (
    id INTEGER PRIMARY KEY, ts INTEGER NOT NULL, actor TEXT NOT NULL,
    action TEXT NOT NULL, target_id TEXT, detail TEXT,
    prev_hash TEXT NOT NULL, entry_hmac TEXT NOT NULL
);
CREATE TABLE ip_stats (
    ip TEXT PRIMARY KEY, first_seen INTEGER, last_seen INTEGER,
    total_packets INTEGER, blocked_count INTEGER, alert_count INTEGER,
    risk_score INTEGER
);
```

### Events (`aegisfw.events`, `aegisfw.store_model`, `aegisfw.ring`)

- `Event` records use Unix-millisecond timestamps, a `Severity`
  (`INFO` < `LOW` < `MEDIUM` < `HIGH` < `CRITICAL`) and an `EventKind`
  (`BLOCK`, `ALLOW`, `ALERT`, `ANOMALY`).
- `EventWriter().insert(conn, event)` stores an event and returns its row id.
  If a row with the same source, destination, destination port and reason
  code was last seen less than 60 seconds before the event's `ts`, that row's
  `hit_count` is incremented and its `last_seen` updated instead.
  `insert_batch(conn, events)` does the same in one transaction.
- `EventWriter().query(conn, EventQuery(...))` filters on `since_ms`,
  `until_ms`, `severity` and `limit`, newest first. The other `EventQuery`
  fields are not applied.
- `EventRing(capacity=50_000)` is a thread-safe bounded FIFO: `push` drops
  the oldest event when full, `drain(n)` removes up to `n` oldest events,
  `len()` counts them.

### Per-IP statistics (`aegisfw.ip_stats`)

`IpStatsCache.record_packet(ip, blocked, score)` counts packets, blocks and
alerts (score > 0) and keeps a risk score as a moving average (α = 0.1)
seeded with the first positive score. `get(ip)` returns a copy of the
`IpStats`. `flush(conn)` adds the counters to `ip_stats` and resets them in
memory; the risk score is kept.

### Audit log (`aegisfw.audit`)

```python
from aegisfw.audit import AuditLog

log = AuditLog(b"secret", "genesis")
log.append(conn, "admin", "rule.create", "ssh-allow", None)
count = log.verify_chain(conn)   # raises AuditChainViolation if altered
```

Each entry's HMAC-SHA256 covers `prev_hash|ts|actor|action|detail`, with the
genesis hash standing in for the first entry's predecessor. `append` returns
the stored `AuditEntry`; `verify_chain` returns the number of entries checked.
Database failures raise `DatabaseError`.

## What the package does not do

- It has no command-line program or daemon.
- It does not talk to the kernel. `aegisfw.backend.FirewallBackend` is an
  abstract base class (`apply_ruleset`, `flush`, `list_active`) with no
  implementation; applying a compiled `Ruleset` is left to the caller.
- It does not create the database schema or run migrations, and does not
  expire old events.
- It does not capture packets; `decode_ip_packet` works on bytes the caller
  supplies.