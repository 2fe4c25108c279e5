from flask import Blueprint, request, jsonify
from auth import get_services, token_required
from errors import ValidationFailed
from models import utcnow
from repository import TaskPayload, UpdateTask
from schemas import CreateTaskSchema, UpdateTaskSchema, decode_request
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

# Controller 只負責 payload <-> service 的轉換,不放商業邏輯


def read_json():
    data = request.get_json(silent=True)
    if data is None:
        return None, (jsonify({'error': 'bad_request', 'message': 'Request body must be JSON'}), 400)
    return data, None

# ============================================
# 查詢自己的任務
# ============================================

@tasks_bp.route('/tasks', methods=['GET'])
@token_required
def get_tasks(identity):
    tasks = get_services().tasks.get_tasks_list(identity.id)
    return jsonify({'tasks': [task.to_dict() for task in tasks]}), 200

# ============================================
# 建立任務
# ============================================

@tasks_bp.route('/tasks', methods=['POST'])
@token_required
def create_task(identity):
    data, error = read_json()
    if error:
        return error

    is_decoded, req = decode_request(CreateTaskSchema, data)
    if not is_decoded:
        raise ValidationFailed('store task: invalid payload', details=req)

    v = req.validate()
    if not v.validated:
        raise ValidationFailed(f"store task: validation failed: {v.message}")

    payload = TaskPayload(
        name=req.name,
        priority=req.priority,
        description=req.description,
        due_date=req.due_date,
        created_at=utcnow(),
    )
    task = get_services().tasks.store_task(identity, payload)

    logger.info(f"Task created: {task.id} by user {identity.email}")

    return jsonify({
        'message': 'successfully created a new task',
        'task': task.to_dict()
    }), 200

# ============================================
# 查詢單一任務
# ============================================

@tasks_bp.route('/tasks/<int:task_id>', methods=['GET'])
@token_required
def show_task(identity, task_id):
    task = get_services().tasks.show_task(task_id)

    if task.created_by != identity.id:
        logger.warning(f"User {identity.id} tried to read task {task_id}")
        return jsonify({
            'error': 'unauthorized',
            'message': 'you do not have the permission to access this data'
        }), 401

    return jsonify(task.to_dict()), 200

# ============================================
# 更新任務
# ============================================

@tasks_bp.route('/tasks/<int:task_id>', methods=['PATCH'])
@token_required
def update_task(identity, task_id):
    """
    更新任務

    擁有權在 repository 的 row lock 交易裡檢查:
    不是 owner 回 401,任務不存在回 404
    """
    data, error = read_json()
    if error:
        return error

    is_decoded, req = decode_request(UpdateTaskSchema, data)
    if not is_decoded:
        raise ValidationFailed('update task: invalid payload', details=req)

    v = req.validate()
    if not v.validated:
        raise ValidationFailed(f"update task: validation failed: {v.message}")

    payload = UpdateTask(
        id=task_id,
        name=req.name,
        priority=req.priority,
        description=req.description,
        due_date=req.due_date,
    )
    task = get_services().tasks.update_task(identity, payload)

    logger.info(f"Task {task_id} updated by user {identity.email}")

    return jsonify(task.to_dict()), 200

# ============================================
# 刪除任務
# ============================================

@tasks_bp.route('/tasks/<int:task_id>', methods=['DELETE'])
@token_required
def delete_task(identity, task_id):
    get_services().tasks.delete_task(task_id, identity.id)

    logger.info(f"Task deleted: {task_id} by user {identity.email}")

    return jsonify({'message': 'task deleted successfully'}), 200
