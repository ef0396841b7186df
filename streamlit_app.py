import logging
import os
from itertools import groupby

import pandas as pd
import streamlit as st

from physiofit.errors import BookingError
from physiofit.models.booking import BookingStatus
from physiofit.models.user import Role
from physiofit.services.refresh import Projection
from physiofit.services.sync import SyncMode
from physiofit.ui.state import (
    KEY_EMAIL,
    KEY_FIRST_NAME,
    KEY_LAST_NAME,
    KEY_PASSWORD,
    KEY_ROLE,
    apply_reset_if_marked,
    flash,
    get_manager,
    mark_reset,
    show_flash,
)

logging.basicConfig(level=getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO))

st.set_page_config(page_title="Saitama Physio Fit", page_icon="🏋️")

manager = get_manager()


def run_action(fn, *args, success: str, then=None):
    """Run a manager operation; business and store errors go to the user as-is."""
    try:
        fn(*args)
    except BookingError as e:
        st.error(e.message)
        return
    if then is not None:
        then()
    flash(success)
    st.rerun()


def bookings_frame(rows) -> pd.DataFrame:
    records = []
    for r in rows:
        records.append(
            {
                "Booking": r.booking.id,
                "Member": r.user.full_name if r.user else f"#{r.booking.user_id}",
                "Course": r.course.name if r.course else r.booking.course_id,
                "Date": r.course.date_display if r.course else "",
                "Time": r.course.time if r.course else "",
                "Status": r.booking.status.value,
                "Booked at": r.booking.timestamp,
                "Cancelled at": r.booking.cancelled_at or "",
            }
        )
    return pd.DataFrame(records)


# -----------------------------
# Login
# -----------------------------
def require_login():
    if manager.viewer is not None:
        return

    st.title("Saitama Physio Fit")
    with st.form("login"):
        email = st.text_input("Email")
        pw = st.text_input("Password", type="password")
        ok = st.form_submit_button("Login")

    if not ok:
        st.stop()

    if manager.authenticate(email, pw) is not None:
        st.rerun()
    else:
        st.error("Invalid email or password")
        st.stop()


require_login()
viewer = manager.viewer

# -----------------------------
# Sidebar
# -----------------------------
with st.sidebar:
    st.markdown(f"**{viewer.full_name}** ({viewer.role.value})")
    if manager.sync.mode == SyncMode.REMOTE:
        st.caption("🟢 Connected to the studio database")
    else:
        st.caption("🟠 Offline mode: changes are kept on this device only")

    if st.button("Sync now", key="sync_now_btn"):
        manager.sync_schedule()
        n = manager.sync.pump()
        flash(f"{n} change(s) received" if n else "Up to date", "info")
        st.rerun()

    if st.button("Logout", key="logout_btn"):
        manager.logout()
        st.rerun()

# pick up changes made from other devices since the last run
manager.sync.pump()
if manager.viewer is None:
    # our own account was deleted from another device
    st.rerun()
show_flash()

tab_names = ["Home", "My Bookings"]
if viewer.is_admin:
    tab_names += ["All Bookings", "Pending", "Waiting List", "Cancelled", "Users"]
tabs = dict(zip(tab_names, st.tabs(tab_names)))


# -----------------------------
# Home: course grid
# -----------------------------
with tabs["Home"]:
    course_rows = manager.projection(Projection.COURSES)
    if not course_rows:
        st.info("No courses are scheduled for the next 4 weeks.")

    for _, day_rows in groupby(course_rows, key=lambda r: r.course.date):
        day_rows = list(day_rows)
        st.subheader(day_rows[0].course.date_display)
        cols = st.columns(3)
        for i, row in enumerate(day_rows):
            with cols[i % 3]:
                st.markdown(f"**{row.course.name}**  \n{row.course.time}")
                if row.booking is not None:
                    st.caption(f"Booked ({row.booking.status.value})")
                if st.button(
                    "Already Booked" if row.booking else "Book Now",
                    key=f"book_{row.course.id}",
                    disabled=row.booking is not None,
                ):
                    run_action(
                        manager.create_booking, viewer.id, row.course.id,
                        success="Booking created successfully!",
                    )


# -----------------------------
# My bookings
# -----------------------------
with tabs["My Bookings"]:
    my_rows = manager.projection(Projection.USER_BOOKINGS)
    if not my_rows:
        st.info("You haven't made any bookings yet. Visit the Home tab to book a course.")

    for row in my_rows:
        c1, c2 = st.columns([4, 1])
        with c1:
            title = row.course.name if row.course else row.booking.course_id
            when = f"{row.course.date_display}, {row.course.time}" if row.course else ""
            st.markdown(f"**{title}** {when}  \nStatus: {row.booking.status.value}")
        with c2:
            if row.booking.is_active and st.button("Cancel", key=f"cancel_{row.booking.id}"):
                run_action(manager.cancel_booking, row.booking.id, success="Booking cancelled successfully.")


# -----------------------------
# Admin views
# -----------------------------
def status_editor(rows, key_prefix: str):
    st.dataframe(bookings_frame(rows), use_container_width=True, hide_index=True)
    if not rows:
        return

    ids = [r.booking.id for r in rows if r.booking.is_active]
    if not ids:
        return
    c1, c2, c3 = st.columns([2, 2, 1])
    with c1:
        booking_id = st.selectbox("Booking", ids, key=f"{key_prefix}_booking")
    with c2:
        status = st.selectbox(
            "New status",
            [s.value for s in BookingStatus],
            key=f"{key_prefix}_status",
        )
    with c3:
        if st.button("Apply", key=f"{key_prefix}_apply"):
            run_action(
                manager.update_status, booking_id, status,
                success=f"Booking {booking_id} set to {status}.",
            )


if viewer.is_admin:
    with tabs["All Bookings"]:
        status_editor(manager.projection(Projection.ALL_BOOKINGS), "all")

    with tabs["Pending"]:
        status_editor(manager.projection(Projection.PENDING), "pending")

    with tabs["Waiting List"]:
        status_editor(manager.projection(Projection.WAITING_LIST), "waiting")

    with tabs["Cancelled"]:
        cancelled = manager.projection(Projection.CANCELLED)
        if not cancelled:
            st.info("No cancelled bookings found.")
        else:
            st.dataframe(bookings_frame(cancelled), use_container_width=True, hide_index=True)

    with tabs["Users"]:
        apply_reset_if_marked()

        st.subheader("Add user")
        c1, c2 = st.columns(2)
        with c1:
            first_name = st.text_input("First name", key=KEY_FIRST_NAME)
            email = st.text_input("Email", key=KEY_EMAIL)
        with c2:
            last_name = st.text_input("Last name", key=KEY_LAST_NAME)
            password = st.text_input("Password", type="password", key=KEY_PASSWORD)
        role = st.selectbox("Role", [r.value for r in Role], key=KEY_ROLE)

        if st.button("Add user", key="add_user_btn"):
            if not first_name.strip() or not last_name.strip():
                st.error("First and last name are required.")
            elif "@" not in email:
                st.error("Please enter a valid email address.")
            elif not password:
                st.error("Password is required.")
            else:
                run_action(
                    manager.add_user, first_name, last_name, email, password, role,
                    success=f"User {email} added.",
                    then=mark_reset,
                )

        st.subheader("All users")
        for user in manager.projection(Projection.ALL_USERS):
            c1, c2 = st.columns([4, 1])
            with c1:
                st.markdown(f"**{user.full_name}** · {user.email} · `{user.username}` · {user.role.value}")
            with c2:
                is_me = user.id == viewer.id
                if st.button("Current User" if is_me else "Delete", key=f"del_user_{user.id}", disabled=is_me):
                    run_action(manager.delete_user, user.id, success="User deleted successfully.")
