def serialize_user(user):
    return {
        'id': user.id,
        'name': user.display_name,
        'email': user.email,
        'role': user.role,
        'room_number': user.room_number,
    }
