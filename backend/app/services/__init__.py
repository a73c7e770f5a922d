"""Application service helpers."""

from .room_directory import SqlRoomDirectory, list_online_users, load_room_record

__all__ = ["SqlRoomDirectory", "list_online_users", "load_room_record"]
