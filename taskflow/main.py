import logging
from typing import List

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from . import auth, crud, database, email_utils, models, schemas
from .celery_worker import send_email_async
from .config import configure_logging
from .errors import AlreadyMemberError, ConflictError, InvalidJoinCodeError
from .realtime import manager
from .roles import can_edit_task

configure_logging()
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=database.engine)

app = FastAPI(title="TaskFlow API", dependencies=[Depends(auth.require_api_key)])

get_db = database.get_db


def _space_access(db: Session, space_id: str, user):
    space = crud.get_space(db, space_id)
    if not space:
        raise HTTPException(status_code=404, detail="Workspace not found")
    role = crud.space_role(db, space, user)
    if role is None:
        raise HTTPException(status_code=403, detail="Not a member of this workspace")
    return space, role


def _space_admin(db: Session, space_id: str, user):
    space, role = _space_access(db, space_id, user)
    if role != schemas.SpaceRole.ADMIN:
        raise HTTPException(status_code=403, detail="Workspace admin access required")
    return space


def _editable_task(db: Session, task_id: int, user):
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    _, role = _space_access(db, task.space_id, user)
    if not can_edit_task(user_id=user.id, role=role, assignee_id=task.assignee_id):
        raise HTTPException(status_code=403, detail="Not authorized to edit this task")
    return task


def _notify(db: Session, background_tasks: BackgroundTasks, recipient, title: str, message: str, type: str, target_id=None):
    notification = crud.create_notification(db, recipient.id, title, message, type, target_id)
    payload = schemas.Notification.model_validate(notification).model_dump(mode="json")
    background_tasks.add_task(manager.send_to_user, recipient.id, {"type": "notification", "payload": payload})
    send_email_async.delay(recipient.email, title, message)


def _notify_assignment(db: Session, background_tasks: BackgroundTasks, task, actor):
    if not task.assignee_id or task.assignee_id == actor.id:
        return
    assignee = crud.get_user_by_id(db, task.assignee_id)
    if assignee:
        _notify(db, background_tasks, assignee, "Task Assigned", f"You have been assigned task: {task.title}", "task_assigned", str(task.id))


# HEALTH
@app.get("/health")
def health():
    return {"status": "ok"}


# AUTH
@app.post("/register", response_model=schemas.CurrentUser)
def register(user: schemas.UserCreate, db: Session = Depends(get_db)):
    if crud.get_user_by_email(db, user.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    if crud.get_user_by_username(db, user.username):
        raise HTTPException(status_code=400, detail="Username already taken")
    return crud.create_user(db, user)


@app.post("/login", response_model=schemas.TokenResponse)
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = auth.authenticate_user(db, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid login credentials")
    token = auth.create_access_token(sub=user.id)
    return {"access_token": token, "token_type": "bearer"}


@app.get("/me", response_model=schemas.CurrentUser)
def me(current_user: models.Profile = Depends(auth.get_current_user)):
    return current_user


@app.patch("/me", response_model=schemas.CurrentUser)
def update_me(updates: schemas.ProfileUpdate, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    if updates.email:
        existing = crud.get_user_by_email(db, updates.email)
        if existing and existing.id != current_user.id:
            raise HTTPException(status_code=400, detail="Email already registered")
    return crud.update_profile(db, current_user.id, updates)


@app.get("/employees", response_model=list[schemas.Employee])
def employees(current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return crud.get_all_employees(db)


# SPACES
@app.get("/spaces", response_model=list[schemas.Space])
def my_spaces(current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return crud.get_user_spaces(db, current_user.id)


@app.post("/spaces", response_model=schemas.Space)
def create_space(space: schemas.SpaceCreate, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    created = crud.create_space(db, space.name, current_user.id, space.description)
    logger.info("space %s created by %s", created.id, current_user.id)
    return created


@app.post("/spaces/join", response_model=schemas.Space)
def join_space(payload: schemas.JoinRequest, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    try:
        return crud.join_space(db, payload.code, current_user.id)
    except InvalidJoinCodeError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/spaces/{space_id}", response_model=schemas.Space)
def get_space(space_id: str, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    space, _ = _space_access(db, space_id, current_user)
    return space


@app.patch("/spaces/{space_id}", response_model=schemas.Space)
def update_space(space_id: str, updates: schemas.SpaceUpdate, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    _space_admin(db, space_id, current_user)
    return crud.update_space(db, space_id, updates)


@app.delete("/spaces/{space_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_space(space_id: str, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    space = crud.get_space(db, space_id)
    if not space:
        raise HTTPException(status_code=404, detail="Workspace not found")
    if space.owner_id != current_user.id and not current_user.is_super_admin:
        raise HTTPException(status_code=403, detail="Only the owner can delete this workspace")
    crud.delete_space(db, space_id)
    return None


@app.get("/spaces/{space_id}/members", response_model=list[schemas.EmployeeWithRole])
def space_members(space_id: str, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    space, _ = _space_access(db, space_id, current_user)
    members = []
    for membership in space.memberships:
        role = schemas.SpaceRole.ADMIN if membership.user_id == space.owner_id else membership.role
        members.append(schemas.EmployeeWithRole(**schemas.Employee.model_validate(membership.user).model_dump(), role=role))
    return members


@app.post("/spaces/{space_id}/members", response_model=schemas.Membership)
def add_member(space_id: str, payload: schemas.MemberAdd, background_tasks: BackgroundTasks,
               current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    space = _space_admin(db, space_id, current_user)
    user = crud.get_user_by_id(db, payload.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        membership = crud.add_member(db, space_id, payload.user_id, payload.role)
    except AlreadyMemberError as e:
        raise HTTPException(status_code=409, detail=str(e))
    _notify(db, background_tasks, user, "Added to workspace", f"You have been added to {space.name}", "space_invite", space.id)
    return membership


@app.patch("/spaces/{space_id}/members/{user_id}", response_model=schemas.Membership)
def update_member_role(space_id: str, user_id: str, payload: schemas.RoleUpdate,
                       current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    _space_admin(db, space_id, current_user)
    membership = crud.update_member_role(db, space_id, user_id, payload.role)
    if not membership:
        raise HTTPException(status_code=404, detail="Membership not found")
    return membership


@app.delete("/spaces/{space_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(space_id: str, user_id: str, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    if user_id != current_user.id:
        _space_admin(db, space_id, current_user)
    try:
        removed = crud.remove_member(db, space_id, user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not removed:
        raise HTTPException(status_code=404, detail="Membership not found")
    return None


@app.get("/memberships", response_model=list[schemas.Membership])
def memberships(space_id: List[str] = Query(default=[]), current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    visible = []
    for sid in space_id:
        space = crud.get_space(db, sid)
        if space and crud.space_role(db, space, current_user):
            visible.append(sid)
    return crud.get_memberships(db, visible)


# LISTS
@app.get("/spaces/{space_id}/lists", response_model=list[schemas.TaskListOut])
def get_lists(space_id: str, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    _space_access(db, space_id, current_user)
    return crud.get_lists(db, space_id)


@app.post("/spaces/{space_id}/lists", response_model=schemas.TaskListOut)
def create_list(space_id: str, payload: schemas.ListCreate, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    _space_access(db, space_id, current_user)
    return crud.create_list(db, space_id, payload.name, payload.color)


# TASKS
@app.get("/spaces/{space_id}/tasks", response_model=list[schemas.Task])
def get_tasks(space_id: str, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    _space_access(db, space_id, current_user)
    return crud.get_tasks(db, space_id)


@app.post("/tasks", response_model=schemas.Task)
def create_task(task: schemas.TaskUpsert, background_tasks: BackgroundTasks,
                current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    if not task.space_id:
        raise HTTPException(status_code=422, detail="space_id is required")
    _space_access(db, task.space_id, current_user)
    try:
        created = crud.create_task(db, task, default_assignee_id=current_user.id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    _notify_assignment(db, background_tasks, created, current_user)
    return created


@app.patch("/tasks/{task_id}", response_model=schemas.Task)
def update_task(task_id: int, task_update: schemas.TaskUpsert, background_tasks: BackgroundTasks,
                current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    db_task = _editable_task(db, task_id, current_user)
    if task_update.space_id and task_update.space_id != db_task.space_id:
        _space_access(db, task_update.space_id, current_user)

    old_assignee_id = db_task.assignee_id
    old_status = db_task.status
    try:
        updated = crud.update_task(db, task_id, task_update)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if updated.assignee_id != old_assignee_id:
        _notify_assignment(db, background_tasks, updated, current_user)
    elif updated.status != old_status and updated.assignee_id and updated.assignee_id != current_user.id:
        assignee = crud.get_user_by_id(db, updated.assignee_id)
        if assignee:
            email_utils.send_email_background(background_tasks, assignee.email, "Task Status Updated",
                                              f"Status of task '{updated.title}' changed to {updated.status}")
    return updated


@app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: int, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    _editable_task(db, task_id, current_user)
    crud.delete_task(db, task_id)
    return None


@app.post("/tasks/{task_id}/comments", response_model=schemas.Comment)
def add_comment(task_id: int, payload: schemas.CommentCreate, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    _space_access(db, task.space_id, current_user)
    return crud.add_comment(db, task_id, current_user.id, payload.content)


@app.post("/tasks/{task_id}/timer/start", response_model=schemas.Task)
def start_timer(task_id: int, payload: schemas.TimerStart, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    _editable_task(db, task_id, current_user)
    return crud.start_timer(db, task_id, payload.started_at)


@app.post("/tasks/{task_id}/timer/stop", response_model=schemas.TimerStopResult)
def stop_timer(task_id: int, payload: schemas.TimerStop, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    _editable_task(db, task_id, current_user)
    try:
        task, entry = crud.stop_timer(db, task_id, payload.ended_at)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"task": task, "entry": entry}


@app.post("/tasks/{task_id}/time-logs", response_model=schemas.TimeLogEntry)
def log_time(task_id: int, payload: schemas.TimeLogCreate, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    _editable_task(db, task_id, current_user)
    try:
        return crud.log_time(db, task_id, payload.start_time, payload.end_time)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# DAILY TASKS / SCRATCHPAD
@app.get("/daily-tasks", response_model=list[schemas.DailyTask])
def daily_tasks(current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return crud.get_daily_tasks(db, current_user.id)


@app.put("/daily-tasks", response_model=schemas.DailyTask)
def upsert_daily_task(item: schemas.DailyTaskIn, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return crud.upsert_daily_task(db, current_user.id, item)


@app.delete("/daily-tasks/{daily_task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_daily_task(daily_task_id: str, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    if not crud.delete_daily_task(db, current_user.id, daily_task_id):
        raise HTTPException(status_code=404, detail="Daily task not found")
    return None


@app.get("/scratchpad", response_model=schemas.ScratchpadContent)
def get_scratchpad(current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return {"content": crud.get_scratchpad(db, current_user.id)}


@app.put("/scratchpad", response_model=schemas.ScratchpadContent)
def put_scratchpad(payload: schemas.ScratchpadContent, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return {"content": crud.sync_scratchpad(db, current_user.id, payload.content)}


# NOTIFICATIONS
@app.get("/notifications", response_model=list[schemas.Notification])
def notifications(current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return crud.get_notifications(db, current_user.id)


@app.post("/notifications/read-all")
def read_all_notifications(current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return {"updated": crud.mark_all_notifications_read(db, current_user.id)}


@app.post("/notifications/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
def read_notification(notification_id: str, current_user: models.Profile = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    if not crud.mark_notification_read(db, current_user.id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return None


@app.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket, token: str = Query(...)):
    user_id = auth.decode_access_token(token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await manager.connect(user_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(user_id, websocket)


# ADMIN
@app.get("/admin/spaces", response_model=list[schemas.Space])
def all_spaces(current_user: models.Profile = Depends(auth.get_super_admin), db: Session = Depends(get_db)):
    return crud.get_all_spaces(db)


@app.get("/admin/tasks", response_model=list[schemas.Task])
def all_tasks(current_user: models.Profile = Depends(auth.get_super_admin), db: Session = Depends(get_db)):
    return crud.get_all_tasks(db)


@app.get("/admin/users", response_model=list[schemas.UserWithRole])
def users_with_roles(current_user: models.Profile = Depends(auth.get_super_admin), db: Session = Depends(get_db)):
    return crud.get_users_with_roles(db)


@app.patch("/admin/users/{user_id}/super-admin", response_model=schemas.CurrentUser)
def set_super_admin(user_id: str, payload: schemas.SuperAdminUpdate,
                    current_user: models.Profile = Depends(auth.get_super_admin), db: Session = Depends(get_db)):
    user = crud.set_super_admin(db, user_id, payload.is_super_admin)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.delete("/admin/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: str, current_user: models.Profile = Depends(auth.get_super_admin), db: Session = Depends(get_db)):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    if not crud.delete_user(db, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return None
