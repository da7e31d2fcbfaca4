"""
Interactive console for EBF Manager.
Browse sections, edit records and follow the dashboard with role-based write access.
"""

import asyncio
import logging
import shlex
from typing import Dict, List, Optional

import pandas as pd

from ebf.app import Application
from ebf.auth import Session, User
from ebf.config import LOG_LEVEL, MAX_LIST_ROWS
from ebf.database import SqlRemoteStore, init_engine
from ebf.errors import EbfError
from ebf.filters import filter_records
from ebf.forms import get_form, prepare_record
from ebf.llm import init_llm
from ebf.metrics import ReportSynthesis
from ebf.models import Notification, Profile
from ebf.rbac import ROUTES, SECTIONS, section_of
from ebf.store import Delete, Insert

HELP = """Commands:
  site <Abidjan|Bouaké|Global>      select the site filter
  period <Jour|Semaine|Mois|Année|all>  select the period filter
  go <path>                         open a section or list ('go /' for home)
  ls                                list records of the current page
  form                              show the fields of the current page's form
  add field=value ...               create a record on the current page
  rm <id>                           delete a record on the current page
  stats [tech=<name>] [from=<date>] [to=<date>]
                                    dashboard totals and report synthesis
  ticker                            flash-info messages
  flash add <alert|success|info> <text> | flash rm <id>   (admin)
  notifs | read <id>                notifications
  ai [tech=<name>] [from=<date>] [to=<date>]
                                    AI summary of the current filters
  profile [name=<full name>] [phone=<phone>]   show or edit your profile
  theme                             toggle dark mode
  quit"""


def _frame(records, limit: int = MAX_LIST_ROWS) -> str:
    if not records:
        return "(no rows)"
    df = pd.DataFrame([r.to_row() for r in records])
    return df.head(limit).to_string(index=False)


def _options(args: List[str]) -> Dict[str, str]:
    return dict(arg.split("=", 1) for arg in args if "=" in arg)


# ── Commands ─────────────────────────────────────────────────────────

def show_page(app: Application) -> None:
    state = app.state
    route = state.route
    if route is None:
        prefix = section_of(state.current_path)
        paths = [p for p in ROUTES if prefix == "/" or p.startswith(prefix)]
        print(f"\n[page] {state.current_path}  sections: {', '.join(SECTIONS)}")
        for path in paths:
            print(f"  {path:32} {ROUTES[path].title}")
        return

    records = filter_records(
        app.store.records(route.table),
        state.site if route.site_filter else None,
        state.period if route.period_filter else None,
    )
    mode = "écriture" if state.can_write else "lecture seule"
    print(f"\n[page] {route.title} ({len(records)} rows, {mode})")
    print(_frame(records))


def show_form(app: Application) -> None:
    route = app.state.route
    if route is None:
        print("[error] Open a list first (go <path>).")
        return
    form = get_form(route.table)
    print(f"\n[form] {form.title}")
    for f in form.fields:
        extra = f" {list(f.options)}" if f.options else ""
        print(f"  {f.name:16} {f.type:7} {'*' if f.required else ' '} {f.label}{extra}")


async def add_record(app: Application, args: List[str]) -> None:
    route = app.state.route
    if route is None:
        print("[error] Open a list first (go <path>).")
        return
    data = _options(args)
    row = prepare_record(route.table, data, app.state.site)
    record = await app.store.mutate(route.table, Insert(row))
    print(f"[ok] Added {record.label} ({record.key[0]}).")


async def remove_record(app: Application, record_id: str) -> None:
    route = app.state.route
    if route is None:
        print("[error] Open a list first (go <path>).")
        return
    await app.store.mutate(route.table, Delete(record_id))
    print(f"[ok] Deleted {record_id}.")


def _synthesis_filters(args: List[str]) -> Dict[str, Optional[str]]:
    opts = _options(args)
    return {"technician": opts.get("tech"), "start": opts.get("from"), "end": opts.get("to")}


def show_stats(app: Application, args: Optional[List[str]] = None) -> None:
    snap = app.dashboard()
    t = snap.totals
    print(f"\n[stats] site={app.state.site} period={getattr(app.state.period, 'value', 'all')}")
    print(f"  CA: {t.revenue:,.0f} FCFA   Dépenses: {t.expenses:,.0f}   Bénéfice: {t.profit:,.0f}")
    print(f"  Marge: {snap.margin_percent}%   Interventions: {t.interventions}")
    if snap.satisfaction.has_data:
        print(f"  Satisfaction: {snap.satisfaction.average}/5 ({snap.satisfaction.count} avis)")
    else:
        print("  Satisfaction: pas de données")
    show_synthesis(app.synthesis(**_synthesis_filters(args or [])))


def show_synthesis(synthesis: ReportSynthesis) -> None:
    print(f"\n[synthesis] {len(synthesis.reports)} rapports")
    print("  Domaines: " + ", ".join(f"{d} {n}" for d, n in synthesis.domains.items()))
    if synthesis.satisfaction.has_data:
        print(f"  Satisfaction: {synthesis.satisfaction.average}/5 ({synthesis.satisfaction.count} avis)")
    if not synthesis.finance.empty:
        print(synthesis.finance.tail(MAX_LIST_ROWS).to_string(index=False))
    if synthesis.technicians:
        print("  Techniciens: " + ", ".join(synthesis.technicians))


def show_ticker(app: Application) -> None:
    print("\n[ticker]")
    for msg in app.dashboard().ticker:
        tag = f" ({msg.id})" if msg.is_manual else ""
        print(f"  [{msg.type}] {msg.text}{tag}")


def show_notifications(app: Application) -> None:
    notifs = app.store.records(Notification.TABLE)
    print(f"\n[notifs] {app.store.unread_count()} unread")
    for n in notifs[:MAX_LIST_ROWS]:
        print(f"  {' ' if n.read else '*'} {n.id}  {n.title}: {n.message}")


async def edit_profile(app: Application, args: List[str]) -> None:
    opts = _options(args)
    if opts:
        current = app.state.profile
        await app.auth.update_profile(opts.get("name", current.full_name), opts.get("phone", current.phone))
        print("[ok] Profil mis à jour.")
    p = app.state.profile
    print(f"\n[profile] {p.full_name}  email={p.email}  tel={p.phone or '-'}  role={p.role}  site={p.site}")


async def flash(app: Application, args: List[str]) -> None:
    if len(args) >= 3 and args[0] == "add":
        await app.store.save_manual_ticker_message(" ".join(args[2:]), args[1])
        print("[ok] Message added.")
    elif len(args) == 2 and args[0] == "rm":
        await app.store.delete_manual_ticker_message(args[1])
        print("[ok] Message deleted.")
    else:
        print("Usage: flash add <alert|success|info> <text> | flash rm <id>")


async def dispatch(app: Application, line: str) -> bool:
    """Run one console command. Returns False when the console should exit."""
    parts = shlex.split(line)
    cmd, args = parts[0].lower(), parts[1:]

    if cmd in {"quit", "exit"}:
        return False
    if cmd == "help":
        print(HELP)
    elif cmd == "site" and args:
        app.state.set_site(args[0])
        print(f"[filter] site={app.state.site}")
    elif cmd == "period" and args:
        app.state.set_period(None if args[0].lower() == "all" else args[0])
        print(f"[filter] period={getattr(app.state.period, 'value', 'all')}")
    elif cmd == "go" and args:
        app.state.navigate(args[0])
        show_page(app)
    elif cmd == "ls":
        show_page(app)
    elif cmd == "form":
        show_form(app)
    elif cmd == "add":
        await add_record(app, args)
    elif cmd == "rm" and args:
        await remove_record(app, args[0])
    elif cmd == "stats":
        show_stats(app, args)
    elif cmd == "ticker":
        show_ticker(app)
    elif cmd == "flash":
        await flash(app, args)
    elif cmd == "notifs":
        show_notifications(app)
    elif cmd == "read" and args:
        await app.store.mark_notification_read(args[0])
        print(f"[ok] {app.store.unread_count()} unread.")
    elif cmd == "ai":
        business, reports = await app.ai_summary(**_synthesis_filters(args))
        print("\n[AI analysis]")
        print(business)
        print("\n[AI report synthesis]")
        print(reports)
    elif cmd == "profile":
        await edit_profile(app, args)
    elif cmd == "theme":
        print(f"[theme] {'dark' if app.state.toggle_theme() else 'light'}")
    else:
        print("Unknown command, type 'help'.")
    return True


# ── Session ──────────────────────────────────────────────────────────

async def login(app: Application, remote: SqlRemoteStore, email: str) -> Profile:
    """Console sign-in: the profile email acts as the access key."""
    row = await remote.find(Profile.TABLE, "email", email)
    if row is None:
        raise ValueError("Unknown email (no match in profiles).")
    profile = Profile.from_row(row)
    app.state.sign_in(Session(access_token="", user=User(id=profile.id, email=profile.email)), profile)
    return profile


async def run_console(remote: SqlRemoteStore, llm) -> None:
    app = Application(remote, llm=llm)

    try:
        email = (await asyncio.to_thread(input, "Enter profile email (or 'quit'): ")).strip()
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    if not email or email.lower() in {"quit", "exit"}:
        print("Goodbye.")
        return

    try:
        profile = await login(app, remote, email)
    except (ValueError, EbfError) as e:
        print("\n[ERROR] Login failed.")
        print("Details:", e)
        return

    print(f"\n[auth] Logged in as: {profile.full_name} (role={profile.role}, site={profile.site})")
    counts = await app.start()
    print(f"[init] Loaded {sum(counts.values())} rows from {len(counts)} tables.")
    print(HELP)

    try:
        while True:
            try:
                line = (await asyncio.to_thread(input, f"\n{app.state.current_path}> ")).strip()
            except (EOFError, KeyboardInterrupt):
                print("\nExiting.")
                break
            if not line:
                continue
            try:
                if not await dispatch(app, line):
                    print("Goodbye.")
                    break
            except EbfError as e:
                print(f"[error] {e}")
            except ValueError as e:
                print(f"[error] Invalid input: {e}")
    finally:
        await app.stop()
        app.state.reset()


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("=== EBF Manager: console (RBAC + realtime sync) ===\n")

    engine = init_engine()
    remote = SqlRemoteStore(engine)
    remote.create_all()
    llm = init_llm()

    asyncio.run(run_console(remote, llm))


if __name__ == "__main__":
    main()
