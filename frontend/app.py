# frontend/app.py
from __future__ import annotations

import os
from datetime import datetime, timezone

import httpx
import streamlit as st

API_URL = os.getenv("API_URL", "http://127.0.0.1:8000")

CLOSE_REASONS = ["TP_HIT", "LIQUIDATED", "MANUAL"]


def fmt_money(amount: float | None, currency: str | None = "USD") -> str:
    if amount is None:
        return "—"
    s = f"{float(amount):,.2f}"
    if (currency or "").upper() == "USD":
        return f"-${s[1:]}" if s.startswith("-") else f"${s}"
    return f"{s} {currency}" if currency else s


def fmt2(x) -> str:
    """Format any number to 2 decimals; otherwise '0.00'."""
    try:
        return f"{float(x):.2f}"
    except (TypeError, ValueError):
        return "0.00"


def fmt_price(x) -> str:
    """Coin prices span 1e-5 .. 1e5: keep significant digits for the small ones."""
    if x is None:
        return "—"
    x = float(x)
    if abs(x) >= 1:
        return f"{x:,.2f}"
    return f"{x:.8f}".rstrip("0").rstrip(".")


def fmt_date(value: str | None) -> str:
    if not value:
        return "—"
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return value


def _client() -> httpx.Client:
    return httpx.Client(base_url=API_URL, timeout=20.0)


def call_api(
    method: str,
    path: str,
    *,
    json: dict | None = None,
    params: dict | None = None,
):
    """Small HTTP helper with nicer Streamlit errors."""
    try:
        with _client() as client:
            r = client.request(method, path, json=json, params=params)
        r.raise_for_status()
        ctype = r.headers.get("content-type", "")
        return r.json() if "application/json" in ctype else r.text
    except httpx.TimeoutException:
        st.warning("⏳ Backend is taking longer than usual. Try again in a few seconds.")
        st.stop()
    except httpx.HTTPStatusError as e:
        detail = e.response.text
        try:
            detail = e.response.json().get("detail", detail)
        except ValueError:
            pass
        st.error(f"API error while calling `{path}`: {detail}")
        st.stop()
    except httpx.HTTPError as e:
        st.error(f"API error while calling `{path}`: {e}")
        st.stop()


# --- P&L colouring ------------------------------------------------------------
def _hex_to_rgb(h: str) -> tuple[int, int, int]:
    h = h.lstrip("#")
    return int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)


def _rgb_to_hex(rgb: tuple[int, int, int]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)


def _blend(c1: str, c2: str, t: float) -> str:
    """Linear blend between two hex colors (0..1)."""
    t = max(0.0, min(1.0, float(t)))
    r1, g1, b1 = _hex_to_rgb(c1)
    r2, g2, b2 = _hex_to_rgb(c2)
    return _rgb_to_hex((round(r1 + (r2 - r1) * t), round(g1 + (g2 - g1) * t), round(b1 + (b2 - b1) * t)))


_RED = "#d93025"
_YEL = "#fbbc04"
_GRN = "#34a853"
_NEUTRAL = "#e9ecef"


def pnl_style(x: float | None, vmin: float, vmax: float) -> str:
    """
    Colour for a P&L cell with a hard 0 pivot:
      losses  -> red .. yellow  (never green)
      profits -> yellow .. green
    """
    base = "border-radius:6px; padding:2px 6px; display:inline-block; text-align:right;"
    if x is None:
        return f"background-color:{_NEUTRAL}; color:black; {base}"

    neg_min = min(0.0, float(vmin))
    pos_max = max(0.0, float(vmax))
    if x < 0 and neg_min < 0:
        color = _blend(_RED, _YEL, (x - neg_min) / (0.0 - neg_min))
    elif x > 0 and pos_max > 0:
        color = _blend(_YEL, _GRN, x / pos_max)
    else:
        color = _YEL
    return f"background-color:{color}; color:white; {base}"


# --- API loaders --------------------------------------------------------------
def load_trades(status: str | None = None):
    if status:
        return call_api("GET", f"/trades/status/{status}")
    return call_api("GET", "/trades")


def load_summary():
    return call_api("GET", "/trades/summary")


def load_trade_valuation(trade_id: str):
    return call_api("GET", f"/trades/{trade_id}/valuation")


def load_investments(trade_id: str):
    return call_api("GET", f"/trades/{trade_id}/investments")


def load_wallet_summaries():
    return call_api("GET", "/wallets/summaries")


def post_trade(data: dict):
    return call_api("POST", "/trades", json=data)


def close_trade(trade_id: str, exit_price: str, close_reason: str):
    # Prices go out as typed; the backend parses "28,09" and "28.09" alike
    return call_api(
        "PATCH", f"/trades/{trade_id}/close", json={"exit_price": exit_price, "close_reason": close_reason}
    )


def delete_trade(trade_id: str):
    return call_api("DELETE", f"/trades/{trade_id}")


def refresh_prices():
    return call_api("POST", "/prices/refresh")


def closed_fields(exit_price: str, close_reason: str) -> dict:
    """Fields that record an already-closed trade, closed now (UTC)."""
    return {
        "status": "CLOSED",
        "exit_price": exit_price,
        "close_reason": close_reason,
        "close_date": datetime.now(timezone.utc).isoformat(),
    }


def trade_row(trade: dict) -> dict:
    """Flatten an API trade into the columns of the trades table."""
    v = trade.get("valuation") or {}
    return {
        "Coin": trade["coin"],
        "Type": trade["trade_type"],
        "Status": trade["status"],
        "Entry": fmt_price(trade.get("entry_price")),
        "Price": fmt_price(v.get("current_price")),
        "Size": fmt_money(trade.get("position_size")),
        "Lev": f"{trade.get('leverage', 1)}x",
        "Value": fmt_money(v.get("current_value")),
        "P&L": v.get("pnl"),
        "P&L %": f"{fmt2(v.get('pnl_percent'))}%" if v else "—",
        "Exchange": trade.get("exchange") or "—",
        "Opened": fmt_date(trade.get("trade_date")),
    }


# --- Dialogs ------------------------------------------------------------------
@st.dialog("Close Trade")
def close_dialog(trade):
    st.write(f"{trade['coin']} {trade['trade_type']} @ {fmt_price(trade.get('entry_price'))}")
    with st.form("close_dialog_form"):
        default = trade.get("live_price") or trade.get("current_price") or ""
        exit_price = st.text_input("Exit Price", value=str(default), help="You can type 28,09 or 28.09")
        reason = st.selectbox("Close Reason", CLOSE_REASONS, index=2)
        save_btn = st.form_submit_button("Close trade")

    if save_btn:
        close_trade(trade["_id"], exit_price, reason)
        st.success(f"Closed {trade['coin']}")
        st.rerun()


@st.dialog("Edit Trade")
def edit_dialog(trade):
    with st.form("edit_dialog_form"):
        entry = st.text_input("Entry Price", value=str(trade.get("entry_price") or ""))
        size = st.text_input("Position Size", value=str(trade.get("position_size") or ""))
        leverage = st.number_input("Leverage", min_value=1, max_value=125, value=int(trade.get("leverage") or 1))
        take_profit = st.text_input("Take Profit", value=str(trade.get("take_profit") or ""))
        liq = st.text_input("Liquidation Price", value=str(trade.get("liquidation_price") or ""))
        notes = st.text_area("Notes", value=trade.get("notes") or "")
        save_btn = st.form_submit_button("Save")

    if save_btn:
        call_api(
            "PUT",
            f"/trades/{trade['_id']}",
            json={
                "entry_price": entry,
                "position_size": size,
                "leverage": leverage,
                "take_profit": take_profit,
                "liquidation_price": liq,
                "notes": notes or None,
            },
        )
        st.success(f"Updated {trade['coin']}")
        st.rerun()


# --- Pages --------------------------------------------------------------------
def page_dashboard():
    s = load_summary()

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total Invested", fmt_money(s["total_invested"]))
    c2.metric("Current Value", fmt_money(s["current_value"]))
    c3.metric("Unrealized P&L", fmt_money(s["unrealized_pnl"]))
    c4.metric("Realized P&L", fmt_money(s["realized_pnl"]))

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Today", fmt_money(s["today_pnl"]))
    c2.metric("Last 7 days", fmt_money(s["week_pnl"]))
    c3.metric("This month", fmt_money(s["month_pnl"]))
    c4.metric("Win rate", f"{fmt2(s['win_rate'])}%", f"{s['winning_trades']}W / {s['losing_trades']}L")

    st.caption(
        f"{s['open_trades']} open · {s['closed_trades']} closed · "
        f"avg win {fmt_money(s['average_profit'])} · avg loss {fmt_money(s['average_loss'])}"
    )
    if s["stale_trade_ids"]:
        st.warning(f"{len(s['stale_trade_ids'])} open trade(s) have no live price and are shown at entry price.")
    for err in s["errors"]:
        st.error(f"Trade {err['trade_id']} left out of totals: {err['message']}")

    st.subheader("Open positions")
    render_trades_table(load_trades("OPEN"), with_actions=False)


def render_trades_table(trades: list[dict], *, with_actions: bool = True):
    if not trades:
        st.info("No trades yet.")
        return

    rows = [trade_row(t) for t in trades]
    pnls = [r["P&L"] for r in rows if r["P&L"] is not None]
    vmin, vmax = (min(pnls), max(pnls)) if pnls else (0.0, 0.0)

    layout = [0.8, 0.7, 0.8, 1.0, 1.0, 1.0, 0.5, 1.0, 1.0, 0.8, 1.6]
    headers = ["Coin", "Type", "Status", "Entry", "Price", "Size", "Lev", "Value", "P&L", "P&L %", ""]
    for col, header in zip(st.columns(layout), headers):
        col.markdown(f"**{header}**")

    for trade, row in zip(trades, rows):
        cols = st.columns(layout)
        for col, key in zip(cols, ["Coin", "Type", "Status", "Entry", "Price", "Size", "Lev", "Value"]):
            col.write(row[key])
        cols[8].markdown(
            f"<div style='{pnl_style(row['P&L'], vmin, vmax)}'>{fmt_money(row['P&L'])}</div>",
            unsafe_allow_html=True,
        )
        cols[9].write(row["P&L %"])

        if not with_actions:
            continue
        b_view, b_edit, b_close, b_del = cols[10].columns(4)
        if b_view.button("🔍", key=f"view_{trade['_id']}"):
            st.session_state.detail_trade = trade["_id"]
            st.session_state.page = "Trade Detail"
            st.rerun()
        if trade["status"] == "OPEN":
            if b_edit.button("✏️", key=f"edit_{trade['_id']}"):
                edit_dialog(trade)
            if b_close.button("🔒", key=f"close_{trade['_id']}"):
                close_dialog(trade)
        if b_del.button("🗑️", key=f"del_{trade['_id']}"):
            delete_trade(trade["_id"])
            st.success(f"Deleted {trade['coin']}")
            st.rerun()


def page_trades():
    f1, f2, f3 = st.columns([1, 1, 1])
    status = f1.selectbox("Status", ["ALL", "OPEN", "CLOSED"])
    trades = load_trades(None if status == "ALL" else status)
    coins = sorted({t["coin"] for t in trades})
    coin = f2.selectbox("Coin", ["ALL"] + coins)
    if coin != "ALL":
        trades = [t for t in trades if t["coin"] == coin]
    if f3.button("🔄 Refresh Prices"):
        refresh_prices()
        st.rerun()
    render_trades_table(trades)


def page_add_trade():
    add_is_closed = st.checkbox("Already closed?", key="add_is_closed")
    with st.form("add_form"):
        coin = st.text_input("Coin Symbol").upper()
        trade_type = st.radio("Direction", ["LONG", "SHORT"], horizontal=True)
        entry = st.text_input("Entry Price", help="You can type 28,09 or 28.09")
        size = st.text_input("Position Size (USD)")
        leverage = st.number_input("Leverage", min_value=1, max_value=125, value=1)
        exchange = st.text_input("Exchange")
        take_profit = st.text_input("Take Profit")
        liq = st.text_input("Liquidation Price")
        fees = st.text_input("Fees")

        exit_price = reason = None
        if add_is_closed:
            exit_price = st.text_input("Exit Price")
            reason = st.selectbox("Close Reason", CLOSE_REASONS, index=2)
        notes = st.text_area("Notes")
        submitted = st.form_submit_button("Add")

    if submitted:
        data = {
            "coin": coin,
            "trade_type": trade_type,
            "entry_price": entry,
            "position_size": size,
            "leverage": leverage,
            "exchange": exchange or None,
            "take_profit": take_profit,
            "liquidation_price": liq,
            "fees": fees,
            "notes": notes or None,
        }
        if add_is_closed:
            data.update(closed_fields(exit_price, reason))
        post_trade(data)
        st.success(f"Added {coin}")


def page_trade_detail():
    trade_id = st.session_state.get("detail_trade")
    if not trade_id:
        st.info("Pick a trade from the Trades page.")
        return

    trade = call_api("GET", f"/trades/{trade_id}")
    v = load_trade_valuation(trade_id)
    st.subheader(f"{trade['coin']} · {trade['trade_type']} · {trade['status']}")
    st.caption(f"Opened {fmt_date(trade.get('trade_date'))} · closed {fmt_date(trade.get('close_date'))}")

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Invested", fmt_money(v["total_invested"]))
    c2.metric("Current Value", fmt_money(v["current_value"]))
    c3.metric("P&L", fmt_money(v["pnl"]), f"{fmt2(v['pnl_percent'])}%")
    c4.metric("Price", fmt_price(v["current_price"]), v["price_source"])
    if v["fees"]:
        st.caption(f"Fees {fmt_money(v['fees'])} · net P&L {fmt_money(v['net_pnl'])}")
    if v["stale"]:
        st.warning("No live price: valued at entry price.")
    if v["missed_pnl"] is not None:
        st.info(f"Had it stayed open: {fmt_money(v['missed_pnl'])} vs. the realized result.")

    st.subheader("Investments")
    investments = load_investments(trade_id)
    for inv in investments:
        cols = st.columns([1.2, 1.0, 1.0, 1.0, 1.0, 0.4])
        cols[0].write(fmt_date(inv.get("investment_date")))
        cols[1].write(fmt_money(inv.get("amount")))
        cols[2].write(fmt_price(inv.get("price_at_investment")))
        cols[3].write(fmt_money(inv.get("current_value")))
        cols[4].write(fmt_money(inv.get("profit_loss")))
        if trade["status"] == "OPEN" and cols[5].button("🗑️", key=f"inv_del_{inv['_id']}"):
            call_api("DELETE", f"/trades/{trade_id}/investments/{inv['_id']}")
            st.rerun()

    if trade["status"] == "OPEN":
        with st.form("add_investment"):
            amount = st.text_input("Amount (USD)")
            price = st.text_input("Price at investment")
            notes = st.text_input("Notes")
            if st.form_submit_button("Add investment"):
                call_api(
                    "POST",
                    f"/trades/{trade_id}/investments",
                    json={"amount": amount, "price_at_investment": price, "notes": notes or None},
                )
                st.rerun()


def page_wallets():
    wallets = load_wallet_summaries()
    for w in wallets:
        cols = st.columns([1.2, 1.0, 1.0, 1.0, 0.6, 0.4])
        cols[0].markdown(f"**{w['exchange_name']}**")
        cols[1].metric("Total", fmt_money(w["total_balance"]))
        cols[2].metric("Used", fmt_money(w["used_balance"]))
        cols[3].metric("Available", fmt_money(w["available_balance"]))
        cols[4].write(f"{w['open_trades_count']} open")
        if cols[5].button("🗑️", key=f"wallet_del_{w['id']}"):
            call_api("DELETE", f"/wallets/{w['id']}")
            st.rerun()
    st.caption(f"Total across exchanges: {fmt_money(sum(w['total_balance'] for w in wallets))}")

    with st.form("add_wallet"):
        name = st.text_input("Exchange")
        balance = st.text_input("Total Balance (USD)")
        notes = st.text_input("Notes")
        if st.form_submit_button("Add wallet"):
            call_api("POST", "/wallets", json={"exchange_name": name, "total_balance": balance, "notes": notes or None})
            st.rerun()


PAGES = {
    "Dashboard": page_dashboard,
    "Trades": page_trades,
    "Add Trade": page_add_trade,
    "Trade Detail": page_trade_detail,
    "Wallets": page_wallets,
}


def main():
    st.set_page_config(page_title="Trade Journal", layout="wide")
    st.title("📒 Crypto Trade Journal")

    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio(
        "Page", list(PAGES), index=list(PAGES).index(st.session_state.page)
    )
    PAGES[st.session_state.page]()


if __name__ == "__main__":
    main()
