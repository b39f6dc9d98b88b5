"""
PetalBid Streamlit front-end.

    streamlit run petalbid/petalbid_ui.py

Role-aware shell: public pages for visitors, then buyer, auctioneer, grower
(supplier) and admin pages behind ``check_access``.
"""
import base64
import binascii
import logging
import uuid
from datetime import datetime

import streamlit as st
from pymongo.errors import PyMongoError
from streamlit_autorefresh import st_autorefresh

from petalbid import config, services, tables, theme
from petalbid.alerts import AlertCenter, error_image_url, error_page_message, euro, page_title
from petalbid.api_client import ApiClient, set_client
from petalbid.auction_hub import HubClient
from petalbid.avatars import avatar_html, svg_avatar_data_uri
from petalbid.clock import DutchClock
from petalbid.forms import validate_auction, validate_product, validate_registration
from petalbid.live_clock import LiveAuctionView
from petalbid.local_storage import session_storage
from petalbid.lot_store import MongoLotStore, sale_to_purchase
from petalbid.models import AuctionStatus, ClockLocation, Product, UserRole
from petalbid.purchases import PurchaseLedger
from petalbid.session import LOADING_TEXT, AccessDecision, AuthSession, check_access

log = logging.getLogger(__name__)

ROLE_LABELS = {
    UserRole.Buyer: "Koper",
    UserRole.Auctioneer: "Veilingmeester",
    UserRole.Supplier: "Kweker",
    UserRole.Admin: "Beheerder",
}
STATUS_LABELS = {
    AuctionStatus.Pending: "Gepland",
    AuctionStatus.Active: "Actief",
    AuctionStatus.Paused: "Gepauzeerd",
    AuctionStatus.Ended: "Beëindigd",
}
BUYER_CLOCK_TPS = 3
ALERT_RENDERERS = {"error": st.error, "warning": st.warning, "info": st.info, "success": st.success}

PUBLIC_PAGES = ["/", "/login", "/register", "/simulator", "/info", "/terms", "/privacy"]
ROLE_PAGES = {
    UserRole.Buyer: ["/veilingklok", "/aankopen", "/account"],
    UserRole.Auctioneer: ["/dashboard", "/veilingbeheer", "/account"],
    UserRole.Supplier: ["/producten", "/verkoop", "/account"],
    UserRole.Admin: ["/gebruikers", "/account"],
}
PAGE_TITLES = {
    "/": "Home",
    "/login": "Inloggen",
    "/register": "Registreren",
    "/simulator": "Klok simulator",
    "/info": "Info",
    "/terms": "Algemene voorwaarden",
    "/privacy": "Privacybeleid",
    "/veilingklok": "Veilingklok",
    "/aankopen": "Mijn Aankopen",
    "/dashboard": "Dashboard",
    "/veilingbeheer": "Veilingbeheer",
    "/producten": "Productbeheer",
    "/verkoop": "Verkoopgeschiedenis",
    "/gebruikers": "Gebruikerbeheer",
    "/account": "Account",
}
PAGE_ROLES = {
    "/veilingklok": [UserRole.Buyer],
    "/aankopen": [UserRole.Buyer],
    "/dashboard": [UserRole.Auctioneer],
    "/veilingbeheer": [UserRole.Auctioneer],
    "/producten": [UserRole.Supplier],
    "/verkoop": [UserRole.Supplier],
    "/gebruikers": [UserRole.Admin],
    "/account": [],
}


# ------------------------------
# Session state
# ------------------------------
def init_state():
    if "auth" not in st.session_state:
        # survives logout so the theme choice stays with this browser session
        storage_id = st.session_state.setdefault("storage_id", uuid.uuid4().hex)
        storage = session_storage(storage_id)
        st.session_state.storage = storage
        st.session_state.api_client = ApiClient(storage=storage)
        st.session_state.auth = AuthSession(storage)
        st.session_state.alerts = AlertCenter()
        st.session_state.ledger = PurchaseLedger()
        st.session_state.theme_mode = theme.load_mode(storage)
        st.session_state.simulator = DutchClock()
        st.session_state.buyer_simulator = new_buyer_clock()
        st.session_state.page = "/"
    set_client(st.session_state.api_client)

    target = st.session_state.pop("nav_target", None)
    if target:
        st.session_state.page = target


def navigate(path: str):
    st.session_state.nav_target = path
    st.rerun()


@st.cache_resource
def get_lot_store() -> MongoLotStore:
    return MongoLotStore()


def init_hub_client() -> HubClient:
    if "hub_client" not in st.session_state:
        st.session_state.hub_client = HubClient()
    return st.session_state.hub_client


def cleanup_hub_client():
    if "hub_client" in st.session_state:
        st.session_state.hub_client.disconnect()
        del st.session_state.hub_client
    st.session_state.pop("live_view", None)


def alert(title: str, message: str, severity: str = "error"):
    st.session_state.alerts.show_alert(title, message, severity)


def render_alerts():
    for a in st.session_state.alerts.drain():
        ALERT_RENDERERS.get(a.severity, st.error)(f"**{a.title}**: {a.message}")


def render_error_page(status_code: int):
    col_img, col_text = st.columns([1, 2])
    with col_img:
        st.image(error_image_url(status_code), use_container_width=True)
    with col_text:
        st.header(error_page_message(status_code))
        if st.button("Terug naar home", type="primary"):
            navigate("/")


def guard(path: str) -> bool:
    """Renders the loading/login/403 fallback and returns False when the page may not show."""
    if path not in PAGE_ROLES:
        return True
    auth = st.session_state.auth
    decision = check_access(auth.user, PAGE_ROLES[path], auth.is_loading)
    if decision == AccessDecision.LOADING:
        st.info(LOADING_TEXT)
        return False
    if decision == AccessDecision.LOGIN:
        st.warning("Log in om deze pagina te bekijken.")
        render_login()
        return False
    if decision == AccessDecision.FORBIDDEN:
        render_error_page(403)
        return False
    return True


def decode_image(image_base64: str):
    if not image_base64:
        return None
    try:
        return base64.b64decode(image_base64.split(",")[-1])
    except (binascii.Error, ValueError):
        return None


def product_image(product: Product, width: int = None):
    image = decode_image(product.image_base64)
    if image:
        st.image(image, caption=product.name, width=width, use_container_width=width is None)
    else:
        st.image("https://via.placeholder.com/200x150.png?text=Geen+afbeelding", width=width or 200)


def sorted_paged_table(rows, columns: dict, key: str, rows_per_page: int = 10):
    """Sortable, paginated table; ``columns`` maps row field -> header."""
    if not rows:
        st.info("Geen gegevens.")
        return
    fields = list(columns.keys())
    col_by, col_order, col_page = st.columns([2, 1, 1])
    order_by = col_by.selectbox("Sorteer op", fields, format_func=columns.get, key=f"{key}_order_by")
    order = col_order.radio("Volgorde", [tables.ASC, tables.DESC], horizontal=True, key=f"{key}_order",
                            format_func=lambda o: "Oplopend" if o == tables.ASC else "Aflopend")
    pages = tables.page_count(len(rows), rows_per_page)
    page = col_page.number_input("Pagina", min_value=1, max_value=pages, value=1, key=f"{key}_page") - 1

    visible = tables.paginate(tables.sort_rows(rows, order_by, order), page, rows_per_page)
    st.dataframe(tables.to_frame(visible, columns), use_container_width=True, hide_index=True)
    st.caption(f"Pagina {page + 1} van {pages} · {len(rows)} regels")


# ------------------------------
# Sidebar
# ------------------------------
def render_sidebar() -> str:
    auth = st.session_state.auth
    user = auth.user
    options = list(PUBLIC_PAGES) if user is None else ROLE_PAGES.get(user.role, []) + ["/simulator", "/info"]
    if st.session_state.page not in options:
        st.session_state.page = options[0]

    with st.sidebar:
        if user is not None:
            st.markdown(avatar_html(user.full_name, size=56, caption=user.full_name), unsafe_allow_html=True)
            st.markdown(f"**Rol:** {ROLE_LABELS.get(user.role, user.role.name)}")

        page = st.radio("Ga naar:", options=options, format_func=PAGE_TITLES.get, key="page")

        st.markdown("---")
        mode = st.session_state.theme_mode
        if st.button("🌙 Donker" if mode == theme.LIGHT else "☀️ Licht", use_container_width=True):
            st.session_state.theme_mode = theme.toggle_mode(st.session_state.storage)
            st.rerun()

        if user is not None and st.button("🚪 Uitloggen", use_container_width=True, type="secondary"):
            res = services.logout()
            if not res.ok:
                log.warning(f"Logout call failed: {res.error}")
            auth.logout()
            cleanup_hub_client()
            storage_id = st.session_state.storage_id
            st.session_state.clear()
            st.session_state.storage_id = storage_id
            st.toast("Je bent uitgelogd.")
            st.rerun()
    return page


# ------------------------------
# Public pages
# ------------------------------
def render_home():
    st.title("🌷 PetalBid")
    st.subheader("De digitale bloemenveiling")
    st.write(
        "Kwekers bieden hun kavels aan, veilingmeesters zetten de klok in gang en kopers "
        "drukken af zodra de prijs hen bevalt. Na de eerste koop kunnen anderen meekopen "
        "tegen dezelfde prijs."
    )
    col_login, col_sim = st.columns(2)
    if st.session_state.auth.user is None and col_login.button("Inloggen", type="primary", use_container_width=True):
        navigate("/login")
    if col_sim.button("Probeer de klok", use_container_width=True):
        navigate("/simulator")


def render_login():
    auth = st.session_state.auth
    with st.container(border=True):
        st.markdown("## 🔑 Inloggen")
        with st.form("login_form"):
            email = st.text_input("E-mailadres", placeholder="naam@voorbeeld.nl")
            password = st.text_input("Wachtwoord", type="password")
            code = st.text_input("2FA-code (indien ingeschakeld)", max_chars=6)
            submitted = st.form_submit_button("Inloggen", type="primary", use_container_width=True)
        if submitted:
            ok, error = auth.login(email.strip(), password, code.strip() or None)
            if not ok:
                st.error(error)
                return
            services.reset_caches()
            st.toast(f"Welkom {auth.user.full_name}!")
            navigate(ROLE_PAGES[auth.user.role][0])
        if st.button("Nog geen account? Registreer"):
            navigate("/register")


def render_register():
    with st.container(border=True):
        st.markdown("## 📝 Registreren")
        roles = [UserRole.Buyer, UserRole.Supplier, UserRole.Auctioneer]
        with st.form("register_form"):
            full_name = st.text_input("Volledige naam")
            email = st.text_input("E-mailadres")
            password = st.text_input("Wachtwoord", type="password")
            role = st.selectbox("Rol", roles, format_func=ROLE_LABELS.get)
            submitted = st.form_submit_button("Registreren", type="primary", use_container_width=True)
        if not submitted:
            return
        errors = validate_registration(full_name, email, password, role)
        if errors:
            for message in errors.values():
                st.error(message)
            return
        res = services.register(full_name.strip(), email.strip(), password, role)
        if not res.ok:
            st.error(res.error)
            return
        st.success("Registratie gelukt. Je kunt nu inloggen.")


def render_info():
    st.title("Hoe werkt de veilingklok?")
    st.markdown(
        """
- De klok start op de **startprijs** en zakt elke tik met de **prijsstap**.
- Wie als eerste koopt, zet de klok stil en neemt een deel van de kavel.
- Daarna kunnen anderen **meekopen** tegen dezelfde prijs.
- Bereikt de klok de **minimumprijs**, dan stopt hij.
- Elke aankoop moet minstens de **minimale afname** zijn en daarna in **stappen** oplopen.
"""
    )


def render_terms():
    st.title("Algemene voorwaarden")
    st.write(
        "Een koop via de veilingklok is bindend. De prijs per stuk is de klokprijs op het "
        "moment van afdrukken. Betaling geschiedt via de betalingsreferentie op de factuur."
    )


def render_privacy():
    st.title("Privacybeleid")
    st.write(
        "PetalBid bewaart je naam, e-mailadres en aankopen om de veiling te kunnen uitvoeren. "
        "Gegevens worden niet met derden gedeeld."
    )


# ------------------------------
# Dutch clock (simulator)
# ------------------------------
def new_buyer_clock() -> DutchClock:
    """The buyer's practice clock runs at a fixed speed."""
    return DutchClock(ticks_per_second=BUYER_CLOCK_TPS)


def simulator_can_buy(clock: DutchClock, user=None, login_required: bool = False) -> bool:
    return clock.can_buy_as(user) if login_required else clock.can_buy


def render_simulator(clock: DutchClock, buyer_name: str = "", key: str = "sim", user=None, login_required: bool = False):
    can_buy = simulator_can_buy(clock, user, login_required)
    if clock.running:
        st_autorefresh(interval=max(config.UI_CLOCK_REFRESH_MS, clock.tick_interval_ms), key=f"{key}_refresh")
        clock.sync()

    with st.container(border=True):
        st.markdown(f"### {clock.product} · {clock.species}")
        st.caption(f"Herkomst: {clock.origin} · minimale afname {clock.min_per_buy}, stappen van {clock.order_step}")
        floor_cls = " petalbid-floor" if clock.at_floor else ""
        st.markdown(f"<div class='petalbid-price{floor_cls}'>{euro(clock.current_price)}</div>", unsafe_allow_html=True)
        st.progress(int(clock.progress_pct), text=f"{euro(clock.start_price)} → {euro(clock.floor_price)}")

        col_rem, col_sold, col_rev = st.columns(3)
        col_rem.metric("Resterend", clock.remaining_qty)
        col_sold.metric("Verkocht", clock.sold_total)
        col_rev.metric("Omzet", euro(clock.revenue))

        if clock.is_sold_out:
            st.success("Kavel uitverkocht.")
        elif clock.at_floor and not clock.running:
            st.warning("Minimumprijs bereikt.")

    col_start, col_buy, col_side, col_resume, col_finish, col_reset = st.columns(6)
    if col_start.button("⏸ Pauze" if clock.running else "▶ Start", key=f"{key}_start", disabled=not (clock.running or clock.can_start)):
        clock.start_pause()
        st.rerun()
    if col_buy.button("🛒 Kopen", key=f"{key}_buy", type="primary", disabled=not can_buy or (clock.paused_for_sale and bool(clock.transactions))):
        clock.open_buy()
        st.rerun()
    if col_side.button("🤝 Meekopen", key=f"{key}_side", disabled=not (clock.paused_for_sale and clock.transactions and can_buy)):
        clock.open_buy(side_buy=True)
        st.rerun()
    if col_resume.button("⏯ Hervatten", key=f"{key}_resume", disabled=not clock.paused_for_sale or clock.purchase_open):
        clock.resume_after_sales()
        st.rerun()
    if col_finish.button("🏁 Kavel afsluiten", key=f"{key}_finish", disabled=clock.is_sold_out):
        clock.finish_lot()
        st.rerun()
    if col_reset.button("↺ Reset", key=f"{key}_reset"):
        clock.reset()
        st.rerun()

    if clock.purchase_open:
        with st.form(f"{key}_purchase"):
            label = "Meekopen" if clock.side_buy_mode else "Kopen"
            st.markdown(f"**{label}** tegen {euro(clock.side_buy_price if clock.side_buy_mode else clock.current_price)} per stuk")
            buyer = st.text_input("Koper", value=buyer_name, disabled=login_required)
            qty = st.number_input("Aantal", min_value=0, max_value=clock.remaining_qty, value=clock.buy_qty, step=clock.order_step)
            col_ok, col_cancel = st.columns(2)
            confirm = col_ok.form_submit_button("Bevestigen", type="primary", use_container_width=True)
            cancel = col_cancel.form_submit_button("Annuleren", use_container_width=True)
        if cancel:
            clock.cancel_purchase()
            st.rerun()
        if confirm:
            tx, error = clock.commit_purchase(buyer, int(qty))
            if error:
                st.error(error)
            else:
                st.toast(f"{tx.buyer} kocht {tx.qty} stuks voor {euro(tx.price)}")
                st.rerun()

    if clock.transactions:
        st.markdown("##### Transacties")
        st.dataframe(
            tables.to_frame(reversed(clock.transactions), {"buyer": "Koper", "qty": "Aantal", "price": "Prijs", "side_buy": "Meekoop"}),
            use_container_width=True,
            hide_index=True,
        )


def render_simulator_page():
    st.title("⏱️ Klok simulator")
    user = st.session_state.auth.user
    render_simulator(st.session_state.simulator, buyer_name=user.full_name if user else "")


# ------------------------------
# Live auction (hub)
# ------------------------------
def connect_live(auction_id: int, min_per_buy: int = 1, order_step: int = 1):
    """Hub client plus the live view for ``auction_id``; renders the error and returns None when offline."""
    auth = st.session_state.auth
    client = init_hub_client()
    if not client.connected:
        success, error = client.connect(auth.token, auth.user.id)
        if not success:
            st.error(f"❌ Verbinding met de veilinghub mislukt: {error}")
            if st.button("🔄 Opnieuw verbinden", type="primary"):
                cleanup_hub_client()
                st.rerun()
            return None, None
        st.session_state.pop("live_view", None)

    view = st.session_state.get("live_view")
    if view is None or view.auction_id != auction_id:
        if view is not None:
            client.leave(view.auction_id)
        view = LiveAuctionView(auction_id, viewer=auth.user, min_per_buy=min_per_buy, order_step=order_step)
        st.session_state.live_view = view
        client.join(auction_id)

    view.apply_all(client.drain())
    for purchase in view.drain_own_purchases():
        st.session_state.ledger.add_purchase(purchase)
    return client, view


def render_live_clock(view: LiveAuctionView):
    with st.container(border=True):
        if view.ended:
            st.warning("🔒 Deze veiling is beëindigd.")
            return
        if view.product is None:
            st.info("Wachten op de veilingmeester...")
            return
        col_img, col_info = st.columns([1, 2])
        with col_img:
            product_image(view.product)
        with col_info:
            st.markdown(f"### {view.product.name} · {view.product.species}")
            price_cls = " petalbid-floor" if view.at_minimum else ""
            st.markdown(f"<div class='petalbid-price{price_cls}'>{euro(view.price)}</div>", unsafe_allow_html=True)
            col_rem, col_min, col_start = st.columns(3)
            col_rem.metric("Resterend", view.remaining)
            col_min.metric("Minimumprijs", euro(view.minimum_price))
            col_start.metric("Startprijs", euro(view.start_price) if view.start_price is not None else "-")
            if view.is_grace_period:
                st.markdown("<span class='petalbid-sidebuy'>Meekopen mogelijk tegen deze prijs</span>", unsafe_allow_html=True)
            elif view.at_minimum:
                st.warning("Minimumprijs bereikt.")
            elif view.is_sold_out:
                st.success("Kavel uitverkocht.")

    if view.transactions:
        st.dataframe(
            tables.to_frame(reversed(view.transactions), {"buyer": "Koper", "qty": "Aantal", "price": "Prijs", "side_buy": "Meekoop"}),
            use_container_width=True,
            hide_index=True,
        )


def buyer_live_auctions() -> list:
    """Active auctions, or [] when the backend does not list them for this user."""
    res = services.get_all_auctions()
    if not res.ok:
        log.warning(f"Auction list unavailable, showing the practice clock: {res.error}")
        return []
    return [a for a in res.data if a.status == AuctionStatus.Active]


def render_buyer_fallback(user):
    st.info("Er is op dit moment geen live veiling bekend. Oefen intussen met de simulator.")
    with st.expander("Deelnemen met veilingnummer"):
        with st.form("join_auction_form"):
            number = st.number_input("Veilingnummer", min_value=1, step=1)
            if st.form_submit_button("Deelnemen", type="primary"):
                st.session_state.buyer_auction_id = int(number)
                st.rerun()
    render_simulator(st.session_state.buyer_simulator, buyer_name=user.full_name, key="buyer_sim", user=user, login_required=True)


def render_veilingklok():
    st.header("🌷 Veilingklok")
    user = st.session_state.auth.user
    live = buyer_live_auctions()
    if live:
        auction = st.selectbox(
            "Veiling",
            live,
            format_func=lambda a: f"{a.description} · {ClockLocation(a.clock_location).name}",
            key="buyer_auction",
        )
        auction_id = auction.id
    else:
        auction_id = st.session_state.get("buyer_auction_id")
        if auction_id is None:
            render_buyer_fallback(user)
            return

    st_autorefresh(interval=config.UI_CLOCK_REFRESH_MS, key="live_clock_refresh")
    client, view = connect_live(auction_id)
    if view is None:
        return

    render_live_clock(view)

    with st.form("bid_form"):
        qty = st.number_input("Aantal", min_value=0, max_value=max(view.remaining, 0), value=min(view.min_per_buy, max(view.remaining, 0)), step=view.order_step)
        label = "🤝 Meekopen" if view.is_grace_period else "🛒 Kopen"
        submitted = st.form_submit_button(label, type="primary", use_container_width=True, disabled=not view.can_bid(user))
    if submitted:
        error = view.validate_bid(int(qty))
        if error:
            st.error(error)
        else:
            ok, error = client.place_bid(auction_id, int(qty))
            if ok:
                view.last_error = None
                st.toast(f"Bod op {int(qty)} stuks verstuurd")
            else:
                st.error(f"❌ Bod versturen mislukt: {error}")
                cleanup_hub_client()

    if view.last_error:
        st.error(view.last_error)

    if st.button("⬅️ Veiling verlaten", type="secondary"):
        client.leave(auction_id)
        cleanup_hub_client()
        st.session_state.pop("buyer_auction_id", None)
        st.rerun()


def hub_sales(lookup, owner_id):
    """Sales the hub recorded for ``owner_id`` as Purchases; None when the lot store is unreachable."""
    try:
        docs = lookup(owner_id)
    except PyMongoError as e:
        log.error(f"Reading hub sales for {owner_id} failed: {e}")
        return None
    return [sale_to_purchase(doc, i) for i, doc in enumerate(docs, 1)]


def buyer_purchases(user, ledger, store) -> list:
    """Clock purchases from the lot store, or this session's ledger when the store is down."""
    rows = hub_sales(store.sales_for_buyer, user.id)
    if rows is None:
        return ledger.get_purchases_by_user(user.id)
    return rows


def render_aankopen():
    st.header("🧾 Mijn Aankopen")
    user = st.session_state.auth.user
    rows = buyer_purchases(user, st.session_state.ledger, get_lot_store())
    res = services.get_sales()
    if not st.session_state.alerts.alert_from_response(res, "Aankopen"):
        rows.extend(res.data)
    render_alerts()

    records = [{**p.to_dict(), "total": p.total} for p in rows]
    col_count, col_total = st.columns(2)
    col_count.metric("Aankopen", len(records))
    col_total.metric("Totaal", euro(sum(r["total"] for r in records)))
    sorted_paged_table(
        records,
        {
            "purchaseDate": "Datum",
            "productName": "Product",
            "species": "Soort",
            "quantity": "Aantal",
            "purchasePrice": "Prijs",
            "total": "Totaal",
            "sideBuy": "Meekoop",
        },
        key="purchases",
    )


# ------------------------------
# Auctioneer pages
# ------------------------------
def auction_rows(auctions) -> list:
    return [
        {
            "id": a.id,
            "description": a.description,
            "startsAt": a.starts_at,
            "location": ClockLocation(a.clock_location).name,
            "status": STATUS_LABELS.get(a.status, str(a.status)),
        }
        for a in auctions
    ]


def render_dashboard():
    st.header("📋 Dashboard")
    user = st.session_state.auth.user
    res = services.get_auctions_by_auctioneer(user.id)
    if st.session_state.alerts.alert_from_response(res, "Veilingen"):
        render_alerts()
        return
    col_all, col_active, col_planned = st.columns(3)
    col_all.metric("Veilingen", len(res.data))
    col_active.metric("Actief", sum(1 for a in res.data if a.status == AuctionStatus.Active))
    col_planned.metric("Gepland", sum(1 for a in res.data if a.status == AuctionStatus.Pending))
    sorted_paged_table(
        auction_rows(res.data),
        {"id": "#", "description": "Omschrijving", "startsAt": "Start", "location": "Klok", "status": "Status"},
        key="dashboard",
    )


def render_create_auction():
    user = st.session_state.auth.user
    with st.expander("➕ Nieuwe veiling", expanded=False):
        with st.form("auction_form", clear_on_submit=True):
            description = st.text_input("Omschrijving")
            col_date, col_time, col_loc = st.columns(3)
            date = col_date.date_input("Datum")
            time_ = col_time.time_input("Tijd")
            location = col_loc.selectbox("Klok", list(ClockLocation), format_func=lambda c: c.name)
            submitted = st.form_submit_button("Veiling aanmaken", type="primary")
        if not submitted:
            return
        starts_at = datetime.combine(date, time_).astimezone()
        errors = validate_auction(description, starts_at)
        if errors:
            for message in errors.values():
                st.error(message)
            return
        res = services.create_auction(description.strip(), starts_at.isoformat(), location, user)
        if not st.session_state.alerts.alert_from_response(res, "Veiling"):
            alert("Veiling", "Veiling succesvol aangemaakt.", "success")
        st.rerun()


def render_lot_links(auction):
    res = services.get_my_products()
    if st.session_state.alerts.alert_from_response(res, "Producten"):
        return
    linked = [p for p in res.data if p.auction_id == auction.id]
    free = [p for p in res.data if p.auction_id is None]

    st.markdown("##### Kavels in deze veiling")
    if not linked:
        st.caption("Nog geen producten gekoppeld.")
    for p in linked:
        with st.container(border=True):
            col_info, col_price, col_actions = st.columns([2, 2, 1])
            col_info.markdown(f"**{p.name}** · {p.species}  \nVoorraad {p.stock} · minimum {euro(p.minimum_price)}")
            price = col_price.number_input(
                "Startprijs per stuk",
                min_value=0.0,
                value=float(p.max_price_per_unit or round(p.minimum_price + 1, 2)),
                step=0.01,
                format="%.2f",
                key=f"max_price_{p.id}",
            )
            if col_price.button("Opslaan", key=f"save_price_{p.id}"):
                r = services.set_max_price(p, round(price, 2))
                if not st.session_state.alerts.alert_from_response(r, "Startprijs"):
                    alert("Startprijs", "Startprijs opgeslagen.", "success")
                st.rerun()
            if col_actions.button("Ontkoppelen", key=f"unlink_{p.id}"):
                st.session_state.alerts.alert_from_response(services.unlink_product(p), "Ontkoppelen")
                st.rerun()

    if free:
        chosen = st.multiselect("Producten koppelen", free, format_func=lambda p: f"{p.name} ({p.species}, {p.stock} st.)")
        if st.button("Koppelen", disabled=not chosen):
            for r in services.link_products(auction.id, chosen):
                st.session_state.alerts.alert_from_response(r, "Koppelen")
            st.rerun()


def start_live_auction(auction, hub):
    """Start the hub clock; a backend without a start endpoint does not block it."""
    if auction.status != AuctionStatus.Active:
        res = services.start_auction(auction.id)
        if not res.ok:
            log.warning(f"Backend did not start auction {auction.id}, starting the hub clock anyway: {res.error}")
    return hub.start_auction(auction.id)


def render_clock_controls(auction):
    st.markdown("##### Klok")
    st_autorefresh(interval=config.UI_CLOCK_REFRESH_MS, key="auctioneer_clock_refresh")
    client, view = connect_live(auction.id)
    if view is None:
        return

    col_start, col_pause, col_next, col_end = st.columns(4)
    if col_start.button("▶ Start", type="primary", use_container_width=True):
        ok, error = start_live_auction(auction, client)
        if not ok:
            alert("Starten", error)
    if col_pause.button("⏸ Pauze", use_container_width=True):
        st.session_state.alerts.alert_from_response(services.pause_auction(auction.id), "Pauzeren")
        client.pause_auction(auction.id)
    if col_next.button("⏭ Volgende kavel", use_container_width=True):
        client.next_lot(auction.id)

    end_key = f"confirm_end_{auction.id}"
    if not st.session_state.get(end_key, False):
        if col_end.button("🛑 Beëindigen", type="secondary", use_container_width=True):
            st.session_state[end_key] = True
            st.rerun()
    else:
        st.error("⚠️ Veiling echt beëindigen?")
        col_yes, col_no = st.columns(2)
        if col_yes.button("✅ Ja", type="primary", use_container_width=True):
            res = services.end_auction(auction.id)
            if not st.session_state.alerts.alert_from_response(res, "Beëindigen"):
                client.end_auction(auction.id)
                alert("Veiling", res.message, "success")
            st.session_state[end_key] = False
            st.rerun()
        if col_no.button("❌ Nee", use_container_width=True):
            st.session_state[end_key] = False
            st.rerun()

    render_live_clock(view)
    if view.last_error:
        st.error(view.last_error)


def render_veilingbeheer():
    st.header("🔨 Veilingbeheer")
    user = st.session_state.auth.user
    render_create_auction()

    res = services.get_auctions_by_auctioneer(user.id)
    if st.session_state.alerts.alert_from_response(res, "Veilingen"):
        render_alerts()
        return
    open_auctions = [a for a in res.data if a.status != AuctionStatus.Ended]
    render_alerts()
    if not open_auctions:
        st.info("Je hebt geen lopende of geplande veilingen.")
        return

    auction = st.selectbox(
        "Veiling",
        open_auctions,
        format_func=lambda a: f"#{a.id} {a.description} ({STATUS_LABELS.get(a.status)})",
        key="manage_auction",
    )
    tab_lots, tab_clock = st.tabs(["Kavels", "Klok"])
    with tab_lots:
        render_lot_links(auction)
    with tab_clock:
        render_clock_controls(auction)
    render_alerts()


# ------------------------------
# Grower pages
# ------------------------------
def product_form(key: str, product: Product = None):
    """Returns (submitted, Product) for a create or edit form."""
    p = product or Product(id=0, name="")
    with st.form(key, clear_on_submit=product is None):
        col_name, col_species = st.columns(2)
        name = col_name.text_input("Naam", value=p.name)
        species = col_species.text_input("Soort", value=p.species)
        col_stock, col_weight, col_min = st.columns(3)
        stock = col_stock.number_input("Voorraad", min_value=0, value=p.stock, step=1)
        weight = col_weight.number_input("Gewicht (g)", min_value=0.0, value=float(p.weight), step=1.0)
        minimum_price = col_min.number_input("Minimumprijs", min_value=0.0, value=float(p.minimum_price), step=0.01, format="%.2f")
        col_pot, col_stem = st.columns(2)
        pot_size = col_pot.number_input("Potmaat (cm)", min_value=0.0, value=float(p.pot_size or 0), step=1.0)
        stem_length = col_stem.number_input("Steellengte (cm)", min_value=0.0, value=float(p.stem_length or 0), step=1.0)
        image_file = st.file_uploader("Afbeelding", type=["png", "jpg", "jpeg"])
        submitted = st.form_submit_button("💾 Opslaan", type="primary")

    if not submitted:
        return False, None
    errors = validate_product(name, species, stock, weight, minimum_price, p.max_price_per_unit)
    if errors:
        for message in errors.values():
            st.error(message)
        return False, None

    image = base64.b64encode(image_file.read()).decode() if image_file else p.image_base64
    return True, Product(
        id=p.id,
        name=name.strip(),
        species=species.strip(),
        stock=int(stock),
        minimum_price=round(minimum_price, 2),
        weight=weight,
        image_base64=image,
        pot_size=pot_size or None,
        stem_length=stem_length or None,
        supplier_id=st.session_state.auth.user.id,
        auction_id=p.auction_id,
        max_price_per_unit=p.max_price_per_unit,
    )


def render_price_history(product: Product):
    res = services.get_product_history(product.id)
    if not res.ok:
        st.error(res.error)
        return
    data = res.data or {}
    supplier = data.get("supplierStats") or {}
    market = data.get("marketStats") or {}
    st.markdown(f"**Soort:** {data.get('species', product.species)}")
    col_own, col_market = st.columns(2)
    col_own.metric("Jouw gemiddelde prijs", euro(supplier.get("averagePrice")))
    col_market.metric("Marktgemiddelde", euro(market.get("averagePrice")))
    last_sales = supplier.get("last10Sales") or []
    if last_sales:
        st.dataframe(tables.to_frame(last_sales), use_container_width=True, hide_index=True)
    else:
        st.caption("Nog geen verkopen.")


def render_productbeheer():
    st.header("📦 Productbeheer")
    with st.expander("➕ Nieuw product", expanded=False):
        submitted, product = product_form("new_product")
        if submitted:
            res = services.create_product(product)
            if not st.session_state.alerts.alert_from_response(res, "Product"):
                alert("Product", "Product succesvol aangemaakt.", "success")
            st.rerun()

    res = services.get_my_products()
    if st.session_state.alerts.alert_from_response(res, "Producten"):
        render_alerts()
        return
    render_alerts()
    products = res.data
    if not products:
        st.info("Je hebt nog geen producten.")
        return

    cols = st.columns(3, gap="medium")
    for i, p in enumerate(products):
        with cols[i % 3]:
            with st.container(border=True):
                st.markdown(f"### {p.name}")
                product_image(p)
                st.write(f"{p.species} · voorraad {p.stock} · minimum {euro(p.minimum_price)}")
                if p.auction_id is not None:
                    st.caption(f"Gekoppeld aan veiling #{p.auction_id}")

                with st.expander("✏️ Bewerken"):
                    submitted, updated = product_form(f"edit_product_{p.id}", p)
                    if submitted:
                        r = services.update_product(p.id, updated.to_dto())
                        if not st.session_state.alerts.alert_from_response(r, "Product"):
                            alert("Product", "Product bijgewerkt.", "success")
                        st.rerun()
                with st.expander("📈 Prijshistorie"):
                    render_price_history(p)

                delete_key = f"confirm_delete_{p.id}"
                if not st.session_state.get(delete_key, False):
                    if st.button("🗑️ Verwijderen", key=f"delete_{p.id}", use_container_width=True):
                        st.session_state[delete_key] = True
                        st.rerun()
                else:
                    st.error("⚠️ Product verwijderen?")
                    col_yes, col_no = st.columns(2)
                    if col_yes.button("✅ Ja", key=f"delete_yes_{p.id}", type="primary", use_container_width=True):
                        r = services.delete_product(p.id)
                        if not st.session_state.alerts.alert_from_response(r, "Product"):
                            alert("Product", r.message, "success")
                        st.session_state[delete_key] = False
                        st.rerun()
                    if col_no.button("❌ Nee", key=f"delete_no_{p.id}", use_container_width=True):
                        st.session_state[delete_key] = False
                        st.rerun()


def render_verkoop():
    st.header("📈 Verkoopgeschiedenis")
    user = st.session_state.auth.user
    sales = hub_sales(get_lot_store().sales_for_supplier, user.id)
    if sales is None:
        st.error("Verkopen ophalen mislukt. Probeer het later opnieuw.")
        return
    records = [{**s.to_dict(), "total": s.total} for s in sales]
    col_count, col_qty, col_rev = st.columns(3)
    col_count.metric("Verkopen", len(records))
    col_qty.metric("Stuks", sum(r["quantity"] for r in records))
    col_rev.metric("Omzet", euro(sum(r["total"] for r in records)))
    sorted_paged_table(
        records,
        {
            "purchaseDate": "Datum",
            "productName": "Product",
            "buyerName": "Koper",
            "quantity": "Aantal",
            "purchasePrice": "Prijs",
            "total": "Totaal",
        },
        key="sales",
    )


# ------------------------------
# Admin and account
# ------------------------------
def _toggle_user(user_id):
    st.session_state.selected_users = tables.toggle_selection(st.session_state.get("selected_users", []), user_id)


def render_gebruikers():
    st.header("👥 Gebruikerbeheer")
    res = services.get_all_users()
    if st.session_state.alerts.alert_from_response(res, "Gebruikers"):
        render_alerts()
        return
    render_alerts()
    me = st.session_state.auth.user
    users = [u for u in res.data if u.id != me.id]
    selected = st.session_state.setdefault("selected_users", [])

    everything = st.checkbox("Alles selecteren", value=bool(users) and len(selected) == len(users))
    if everything != (bool(users) and len(selected) == len(users)):
        st.session_state.selected_users = tables.select_all(users, "id", everything)
        for u in users:
            st.session_state[f"sel_{u.id}"] = everything
        st.rerun()

    for u in users:
        with st.container(border=True):
            col_check, col_avatar, col_info = st.columns([1, 1, 6])
            st.session_state.setdefault(f"sel_{u.id}", u.id in selected)
            col_check.checkbox(" ", key=f"sel_{u.id}", on_change=_toggle_user, args=(u.id,), label_visibility="collapsed")
            col_avatar.image(svg_avatar_data_uri(u.full_name, size=40), width=40)
            col_info.markdown(f"**{u.full_name}** · {u.email}  \n{ROLE_LABELS.get(u.role, u.role.name)}{' · 2FA' if u.is_totp_enabled else ''}")

    if st.button(f"🗑️ {len(selected)} gebruiker(s) verwijderen", disabled=not selected, type="primary"):
        for user_id in list(selected):
            r = services.delete_user(user_id)
            if not st.session_state.alerts.alert_from_response(r, "Verwijderen"):
                alert("Gebruikers", r.message, "success")
        st.session_state.selected_users = []
        st.rerun()


def render_account():
    st.header("👤 Account")
    auth = st.session_state.auth
    user = auth.user
    st.markdown(avatar_html(user.full_name, size=64, caption=user.email), unsafe_allow_html=True)
    st.caption(f"Tweestapsverificatie: {'aan' if user.is_totp_enabled else 'uit'}")

    with st.form("profile_form"):
        full_name = st.text_input("Volledige naam", value=user.full_name)
        email = st.text_input("E-mailadres", value=user.email)
        submitted = st.form_submit_button("Profiel opslaan", type="primary")
    if submitted:
        res = services.update_profile(full_name.strip(), email.strip())
        if res.ok:
            auth.update_user(res.data)
            st.success("Profiel bijgewerkt.")
        else:
            st.error(res.error)

    with st.form("password_form", clear_on_submit=True):
        current = st.text_input("Huidig wachtwoord", type="password")
        new = st.text_input("Nieuw wachtwoord", type="password")
        repeat = st.text_input("Herhaal nieuw wachtwoord", type="password")
        submitted = st.form_submit_button("Wachtwoord wijzigen")
    if submitted:
        errors = validate_registration(user.full_name, user.email, new, user.role)
        if new != repeat:
            st.error("Wachtwoorden komen niet overeen.")
        elif "password" in errors:
            st.error(errors["password"])
        else:
            res = services.change_password(current, new)
            if res.ok:
                st.success(res.message)
            else:
                st.error(res.error)


PAGES = {
    "/": render_home,
    "/login": render_login,
    "/register": render_register,
    "/simulator": render_simulator_page,
    "/info": render_info,
    "/terms": render_terms,
    "/privacy": render_privacy,
    "/veilingklok": render_veilingklok,
    "/aankopen": render_aankopen,
    "/dashboard": render_dashboard,
    "/veilingbeheer": render_veilingbeheer,
    "/producten": render_productbeheer,
    "/verkoop": render_verkoop,
    "/gebruikers": render_gebruikers,
    "/account": render_account,
}


def main():
    current = st.session_state.get("nav_target") or st.session_state.get("page", "/")
    st.set_page_config(page_title=page_title(current, PAGE_TITLES), page_icon="🌷", layout="wide")
    init_state()

    auth = st.session_state.auth
    if auth.is_loading:
        with st.spinner(LOADING_TEXT):
            auth.validate_session()

    st.markdown(theme.css(st.session_state.theme_mode), unsafe_allow_html=True)
    page = render_sidebar()
    render_alerts()
    if guard(page):
        PAGES.get(page, lambda: render_error_page(404))()


if __name__ == "__main__":
    config.setup_logging()
    main()
