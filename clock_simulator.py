"""
Standalone Dutch-clock simulator, no backend or hub needed.

    streamlit run clock_simulator.py
"""
import streamlit as st

from petalbid import config
from petalbid.clock import MAX_TPS, MIN_TPS, DutchClock
from petalbid.forms import validate_clock_settings
from petalbid.petalbid_ui import render_simulator

# Page config
st.set_page_config(
    page_title="Klok simulator | PetalBid",
    page_icon="🌷",
    layout="wide"
)

# Initialize session state
if "clock" not in st.session_state:
    st.session_state.clock = DutchClock()

clock = st.session_state.clock

# Sidebar with every clock setting
st.sidebar.title("⚙️ Instellingen")
with st.sidebar.form("settings"):
    product = st.text_input("Product", value=clock.product)
    species = st.text_input("Soort", value=clock.species)
    origin = st.text_input("Herkomst", value=clock.origin)
    total_qty = st.number_input("Kavelomvang", min_value=0, value=clock.total_qty, step=1)
    min_per_buy = st.number_input("Minimale afname", min_value=1, value=clock.min_per_buy, step=1)
    order_step = st.number_input("Stapgrootte", min_value=1, value=clock.order_step, step=1)
    start_price = st.number_input("Startprijs", min_value=0.01, value=clock.start_price, step=0.01, format="%.2f")
    floor_price = st.number_input("Bodemprijs", min_value=0.0, value=clock.floor_price, step=0.01, format="%.2f")
    price_step = st.number_input("Prijsstap", min_value=0.001, value=clock.price_step, step=0.001, format="%.3f")
    tps = st.slider("Tikken per seconde", MIN_TPS, MAX_TPS, value=clock.ticks_per_second)
    applied = st.form_submit_button("Toepassen", type="primary", use_container_width=True)

if applied:
    errors = validate_clock_settings(start_price, floor_price, price_step, tps, total_qty)
    if errors:
        for message in errors.values():
            st.sidebar.error(message)
    else:
        clock.product, clock.species, clock.origin = product, species, origin
        clock.min_per_buy = min_per_buy
        clock.order_step = order_step
        clock.start_price = start_price
        clock.floor_price = floor_price
        clock.price_step = price_step
        clock.ticks_per_second = tps
        if total_qty != clock.total_qty:
            clock.total_qty = total_qty
        clock.reset()
        st.rerun()

with st.sidebar.expander("Resterend aanpassen"):
    remaining = st.number_input("Resterend", min_value=0, max_value=clock.total_qty, value=clock.remaining_qty, step=1)
    if st.button("Instellen", use_container_width=True):
        clock.set_remaining(remaining)
        st.rerun()

st.title("⏱️ Klok simulator")
st.caption(f"Tikinterval {clock.tick_interval_ms} ms · minimale verversing {config.UI_CLOCK_REFRESH_MS} ms · stap € {clock.price_step:.3f}")
render_simulator(clock, key="standalone")

# Footer
st.markdown("---")
st.markdown("**Let op:** dit is een simulatie. Er worden geen echte aankopen gedaan.")
