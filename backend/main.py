import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from models.ledger import (
    EXPENSE_CATEGORIES,
    GROUP_COLORS,
    GROUP_ICONS,
    ActiveGroupSelection,
    ExpenseCreate,
    ExpenseUpdate,
    GroupCreate,
    GroupUpdate,
    MemberAdd,
    UserCreate,
)
from utils.ledgerErrors import LedgerError, NotFoundError, ReferentialIntegrityError, ValidationError
from utils.ledgerManager import LedgerManager
from utils.ledgerStore import LedgerStore
from utils.receiptStore import ReceiptStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def get_ledger_store():
    """Create a new LedgerStore instance"""
    return LedgerStore()

def get_receipt_store():
    """Create a new ReceiptStore instance"""
    return ReceiptStore()

def build_ledger(store: LedgerStore) -> LedgerManager:
    """Load the ledger from the store and persist it after every change"""
    ledger = LedgerManager.fromSnapshot(store.load())
    # save runs inline on the event loop so writes stay in mutation order
    ledger.addListener(store.save)
    return ledger

def get_ledger(request: Request) -> LedgerManager:
    """Ledger shared by every request of this application"""
    return request.app.state.ledger

def unused_receipts(ledger: LedgerManager, references):
    """Receipt references no remaining expense points at"""
    inUse = {e.receipt for e in ledger.listExpenses() if e.receipt}
    return sorted({r for r in references if r and r not in inUse})

def clean_receipt_files(store: ReceiptStore, references):
    """Background task to remove receipts no expense uses any more"""
    for reference in references:
        store.delete(reference)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "ledger", None) is None:
        app.state.ledger = build_ledger(get_ledger_store())
    yield


# Create FastAPI app with proper metadata
app = FastAPI(
    title="Splitsa Ledger API",
    description="API for tracking shared group expenses and member balances",
    version="1.0.0",
    lifespan=lifespan,
)

# Add gzip compression for faster responses
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    """Map ledger errors onto HTTP status codes"""
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ReferentialIntegrityError):
        status_code = 409
    elif isinstance(exc, ValidationError):
        status_code = 400
    else:
        status_code = 500
    logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"status": "error", "message": exc.message})


@app.get("/")
async def root():
    """Root endpoint to verify API is running"""
    return {"message": "Welcome to the Splitsa Ledger API", "status": "operational"}


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.get("/options")
async def get_options():
    """Categories, group colors and group icons accepted by the ledger"""
    return {
        "categories": [
            {"value": category.value, **display} for category, display in EXPENSE_CATEGORIES.items()
        ],
        "colors": GROUP_COLORS,
        "icons": GROUP_ICONS,
    }


@app.get("/me")
async def get_current_user(ledger: LedgerManager = Depends(get_ledger)):
    return {"status": "success", "user": ledger.currentUser}


@app.get("/users")
async def get_users(ledger: LedgerManager = Depends(get_ledger)):
    return {"status": "success", "users": ledger.listUsers()}


@app.post("/users")
async def create_user(user: UserCreate, ledger: LedgerManager = Depends(get_ledger)):
    """Register a user who can then be added to groups"""
    logger.info(f"Registering user: {user.name}")
    return {"status": "success", "user": ledger.addUser(user)}


@app.get("/groups")
async def get_groups(ledger: LedgerManager = Depends(get_ledger)):
    """
    Get all groups of the session

    Returns:
        JSON with every group and the active group ID
    """
    groups = ledger.listGroups()
    logger.info(f"Retrieved {len(groups)} groups")
    return {"status": "success", "groups": groups, "activeGroupId": ledger.activeGroupId}


@app.post("/groups")
async def create_group(group: GroupCreate, ledger: LedgerManager = Depends(get_ledger)):
    """
    Create a group led by its creator

    Args:
        group: Name, description, color and icon of the new group

    Returns:
        JSON with the created group
    """
    logger.info(f"Creating group: {group.name}")
    return {"status": "success", "group": ledger.addGroup(group)}


@app.get("/groups/{groupId}")
async def get_group(groupId: str, ledger: LedgerManager = Depends(get_ledger)):
    return {
        "status": "success",
        "group": ledger.getGroup(groupId),
        "members": ledger.groupMembers(groupId),
    }


@app.patch("/groups/{groupId}")
async def update_group(groupId: str, updates: GroupUpdate, ledger: LedgerManager = Depends(get_ledger)):
    logger.info(f"Updating group {groupId}")
    return {"status": "success", "group": ledger.updateGroup(groupId, updates)}


@app.delete("/groups/{groupId}")
async def delete_group(
    groupId: str,
    background_tasks: BackgroundTasks,
    ledger: LedgerManager = Depends(get_ledger),
    receipt_store: ReceiptStore = Depends(get_receipt_store),
):
    """
    Delete a group together with all of its expenses

    Returns:
        JSON with the deleted group ID and the new active group ID
    """
    logger.info(f"Deleting group {groupId}")
    receipts = [e.receipt for e in ledger.expensesForGroup(groupId) if e.receipt]
    ledger.deleteGroup(groupId)
    receipts = unused_receipts(ledger, receipts)
    if receipts:
        background_tasks.add_task(clean_receipt_files, receipt_store, receipts)
    return {"status": "success", "deleted": groupId, "activeGroupId": ledger.activeGroupId}


@app.post("/groups/{groupId}/members")
async def add_group_member(groupId: str, member: MemberAdd, ledger: LedgerManager = Depends(get_ledger)):
    logger.info(f"Adding user {member.userId} to group {groupId}")
    group = ledger.addMember(groupId, member.userId)
    return {"status": "success", "group": group, "members": ledger.groupMembers(groupId)}


@app.get("/groups/{groupId}/expenses")
async def get_group_expenses(groupId: str, ledger: LedgerManager = Depends(get_ledger)):
    """Expenses of a group, newest first"""
    return {"status": "success", "expenses": ledger.expensesForGroup(groupId)}


@app.get("/groups/{groupId}/summary")
async def get_group_summary(groupId: str, ledger: LedgerManager = Depends(get_ledger)):
    """
    Totals and balances of a group

    Returns:
        JSON with total spent, average per person, largest expense and the
        signed balance of every member (positive means owed)
    """
    return {"status": "success", "summary": ledger.groupSummary(groupId)}


@app.get("/groups/{groupId}/balances/{userId}")
async def get_user_balance(groupId: str, userId: str, ledger: LedgerManager = Depends(get_ledger)):
    return {
        "status": "success",
        "groupId": groupId,
        "userId": userId,
        "balance": ledger.userBalance(groupId, userId),
    }


@app.get("/groups/{groupId}/settlements")
async def get_group_settlements(groupId: str, ledger: LedgerManager = Depends(get_ledger)):
    """Transfers that would settle every balance in the group"""
    return {"status": "success", "settlements": ledger.groupSettlements(groupId)}


@app.post("/expenses")
async def create_expense(expenseData: ExpenseCreate, ledger: LedgerManager = Depends(get_ledger)):
    """
    Record an expense in a group

    Args:
        expenseData: The expense details; the split defaults to every member

    Returns:
        JSON with the recorded expense
    """
    logger.info(f"Creating expense: {expenseData}")
    expense = ledger.addExpense(expenseData)
    return {"status": "success", "expense_id": expense.id, "expense": expense}


@app.get("/expenses/{expenseId}")
async def get_expense(expenseId: str, ledger: LedgerManager = Depends(get_ledger)):
    return {"status": "success", "expense": ledger.getExpense(expenseId)}


@app.patch("/expenses/{expenseId}")
async def update_expense(
    expenseId: str,
    updates: ExpenseUpdate,
    background_tasks: BackgroundTasks,
    ledger: LedgerManager = Depends(get_ledger),
    receipt_store: ReceiptStore = Depends(get_receipt_store),
):
    """Merge fields into an expense; a replaced receipt is removed once unused"""
    logger.info(f"Updating expense {expenseId}")
    previous = ledger.getExpense(expenseId).receipt
    expense = ledger.updateExpense(expenseId, updates)
    if previous and previous != expense.receipt:
        receipts = unused_receipts(ledger, [previous])
        if receipts:
            background_tasks.add_task(clean_receipt_files, receipt_store, receipts)
    return {"status": "success", "expense": expense}


@app.delete("/expenses/{expenseId}")
async def delete_expense(
    expenseId: str,
    background_tasks: BackgroundTasks,
    ledger: LedgerManager = Depends(get_ledger),
    receipt_store: ReceiptStore = Depends(get_receipt_store),
):
    logger.info(f"Deleting expense {expenseId}")
    expense = ledger.deleteExpense(expenseId)
    receipts = unused_receipts(ledger, [expense.receipt])
    if receipts:
        background_tasks.add_task(clean_receipt_files, receipt_store, receipts)
    return {"status": "success", "deleted": expenseId}


@app.get("/active-group")
async def get_active_group(ledger: LedgerManager = Depends(get_ledger)):
    return {"status": "success", "activeGroupId": ledger.activeGroupId}


@app.put("/active-group")
async def set_active_group(selection: ActiveGroupSelection, ledger: LedgerManager = Depends(get_ledger)):
    ledger.setActiveGroup(selection.groupId)
    return {"status": "success", "activeGroupId": ledger.activeGroupId}


@app.post("/receipts")
async def upload_receipt(
    file: UploadFile = File(...),
    receipt_store: ReceiptStore = Depends(get_receipt_store),
):
    """
    Upload a receipt image to attach to an expense

    Args:
        file: Receipt image file

    Returns:
        JSON with the receipt reference to store in Expense.receipt
    """
    logger.info(f"Processing receipt upload: {file.filename}")

    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail=f"File {file.filename} is not an image")

    content = await file.read()
    reference = await run_in_threadpool(receipt_store.save, content)
    return {"status": "success", "receipt": reference}
