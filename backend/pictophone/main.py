from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from pictophone import db
from pictophone.models import Player

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Pictophone server!'})


@main.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = data.get('password')
    if not username or not password:
        return jsonify({'error': 'Missing username or password'}), 400

    if Player.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400

    player = Player(username=username)
    if 'hide_mature_content' in data:
        player.hide_mature_content = bool(data['hide_mature_content'])
    player.set_password(password)
    db.session.add(player)
    db.session.commit()
    login_user(player)

    return jsonify({'success': True, 'user': player.to_dict()}), 201


@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    player = Player.query.filter_by(username=data.get('username')).first()
    if player and player.check_password(data.get('password')):
        login_user(player, remember=True)
        return jsonify({'success': True, 'user': player.to_dict()})
    return jsonify({'error': 'Invalid username or password'}), 401


@main.route('/check_login', methods=['GET'])
@login_required
def check_login():
    return jsonify({'success': True, 'user': current_user.to_dict()})


@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})
