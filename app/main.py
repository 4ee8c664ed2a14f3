"""
Streamlit Frontend for Cashflow

A small operator UI over the ledger. It talks to the services in-process,
except for receipt bytes: those go straight from this UI to the object
store through the presigned URL, exactly as a mobile client would.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. The receipt upload uses the same staged flow as every other client
3. Clear error messages in simple language
4. Visual feedback for all operations
"""

import asyncio
from datetime import date
from decimal import Decimal

import httpx
import streamlit as st

from cashflow.errors import CashflowError
from cashflow.models import CreateTransactionRequest, TransactionType, UploadStatus
from cashflow.orchestrator import AppComponents, create_app_components


# Page configuration
st.set_page_config(
    page_title="Cashflow",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better UX
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> AppComponents:
    """Build components once per Streamlit server process."""
    return create_app_components()


def upload_receipt(components: AppComponents, data: bytes, content_type: str) -> str:
    """
    Stage a receipt through a presigned PUT.

    Returns the upload id to attach to the transaction.
    """
    credential = run_async(
        components.coordinator.request_credential(content_type, len(data))
    )

    response = httpx.put(
        credential.presigned_url,
        content=data,
        headers=credential.headers,
        timeout=30.0,
    )
    response.raise_for_status()

    status = run_async(components.coordinator.get_status(credential.upload_id))
    if status.status != UploadStatus.COMPLETED:
        raise RuntimeError("The receipt did not arrive in storage. Please try again.")

    return credential.upload_id


def main():
    """Main application entry point."""
    st.sidebar.title("💰 Cashflow")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Go to",
        ["➕ Add Transaction", "📋 Transactions", "📊 Monthly Summary", "⚙️ Settings"],
    )

    if page == "⚙️ Settings":
        render_settings_page()
        return

    try:
        components = get_components()
    except Exception as e:
        st.error(f"Could not start: {e}")
        st.info("Check the Settings page for configuration problems.")
        return

    if page == "➕ Add Transaction":
        render_add_page(components)
    elif page == "📋 Transactions":
        render_transactions_page(components)
    elif page == "📊 Monthly Summary":
        render_summary_page(components)


def render_add_page(components: AppComponents):
    """Render the add-transaction page."""
    st.title("➕ Add Transaction")
    st.markdown("Record money spent or earned. A receipt photo is optional.")

    upload_settings = components.coordinator.settings

    with st.form("add_transaction"):
        col1, col2 = st.columns(2)
        with col1:
            transaction_type = st.selectbox(
                "Type",
                [t.value for t in TransactionType],
                format_func=str.capitalize,
            )
            amount = st.number_input("Amount", min_value=0.01, step=1.0, format="%.2f")
        with col2:
            transaction_date = st.date_input("Date", value=date.today())
            description = st.text_input("Description")

        receipt = st.file_uploader(
            "Receipt photo",
            type=[t.split("/")[1] for t in upload_settings.allowed_content_types_list],
        )

        submitted = st.form_submit_button("💾 Save")

    if not submitted:
        return

    upload_id = None
    if receipt is not None:
        with st.spinner("Uploading receipt..."):
            try:
                upload_id = upload_receipt(components, receipt.getvalue(), receipt.type)
            except CashflowError as e:
                st.error(f"❌ {e.message}")
                return
            except (httpx.HTTPError, RuntimeError) as e:
                st.error(f"❌ Upload failed: {e}")
                return

    request = CreateTransactionRequest(
        date=transaction_date.isoformat(),
        amount=Decimal(str(amount)),
        type=transaction_type,
        description=description,
        upload_id=upload_id,
    )

    with st.spinner("Saving..."):
        try:
            transaction = run_async(components.transactions.create_transaction(request))
        except CashflowError as e:
            st.error(f"❌ {e.message}")
            return

    st.success(f"✅ Saved {transaction.type.value} of {transaction.amount} on {transaction.date}")
    if transaction.image_url:
        st.image(transaction.image_url, width=300)


def render_transactions_page(components: AppComponents):
    """Render the transaction list."""
    st.title("📋 Transactions")

    page_size = 20
    page_number = st.number_input("Page", min_value=1, value=1, step=1)

    try:
        page = run_async(components.transactions.list_transactions(
            limit=page_size,
            offset=(int(page_number) - 1) * page_size,
        ))
    except CashflowError as e:
        st.error(f"❌ {e.message}")
        return

    st.caption(f"{page.total} transactions in total")

    if not page.transactions:
        st.info("No transactions yet.")
        return

    for transaction in page.transactions:
        sign = "+" if transaction.type == TransactionType.EARNING else "-"
        with st.expander(f"{transaction.date}  {sign}{transaction.amount}  {transaction.description}"):
            st.write(f"**Type:** {transaction.type.value}")
            if transaction.image_url:
                st.markdown(f"[🧾 View receipt]({transaction.image_url})")
            if st.button("🗑️ Delete", key=f"delete_{transaction.id}"):
                try:
                    run_async(components.transactions.delete_transaction(transaction.id))
                except CashflowError as e:
                    st.error(f"❌ {e.message}")
                else:
                    st.success("Deleted")
                    st.rerun()


def render_summary_page(components: AppComponents):
    """Render the monthly summary."""
    st.title("📊 Monthly Summary")

    today = date.today()
    col1, col2 = st.columns(2)
    with col1:
        year = st.number_input("Year", min_value=2000, max_value=2100, value=today.year)
    with col2:
        month = st.selectbox("Month", list(range(1, 13)), index=today.month - 1)

    try:
        aggregate = run_async(
            components.transactions.get_monthly_aggregate(f"{int(year):04d}-{month:02d}")
        )
    except CashflowError as e:
        st.error(f"❌ {e.message}")
        return

    col1, col2, col3 = st.columns(3)
    col1.metric("Income", f"{aggregate.income}")
    col2.metric("Spending", f"{aggregate.spending}")
    col3.metric("Net", f"{aggregate.net_total}")
    st.caption(f"{aggregate.transaction_count} transactions")


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    from cashflow.config import validate_all_settings

    status = validate_all_settings()

    groups = [
        ("Object storage (S3)", "storage"),
        ("Upload policy", "uploads"),
        ("Database", "database"),
        ("Application", "app"),
    ]

    for name, key in groups:
        if status.get(key, False):
            st.success(f"✅ {name} - OK")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "Settings are read from environment variables or a `.env` file "
        "(`S3_*`, `UPLOAD_*`, `DATABASE_*`). See `.env.example`."
    )


if __name__ == "__main__":
    main()
