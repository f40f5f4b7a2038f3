from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.schema import Column, ForeignKey
from sqlalchemy.types import JSON, Boolean, DateTime, Integer, String, Uuid
from uuid6 import uuid7
from datetime import datetime


class Base(DeclarativeBase):
    pass


class Room(Base):
    __tablename__ = "rooms"
    room_id = Column(Uuid, primary_key=True, default=uuid7)
    code = Column(String, unique=True, index=True)
    host_id = Column(String)
    status = Column(String, default="open")
    admin_token_hash = Column(String)
    salt = Column(String)
    created_at = Column(DateTime, default=datetime.now)

    games = relationship("Game", back_populates="room", cascade="all, delete")


class Game(Base):
    __tablename__ = "games"
    game_id = Column(Uuid, primary_key=True, default=uuid7)
    room_id = Column(Uuid, ForeignKey("rooms.room_id"), index=True)
    mode = Column(Integer, default=501)
    double_out = Column(Boolean, default=False)
    status = Column(String, default="pending")
    current_player_id = Column(Uuid, nullable=True)
    winner_player_id = Column(Uuid, nullable=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    room = relationship("Room", back_populates="games")
    players = relationship(
        "Player",
        back_populates="game",
        cascade="all, delete",
        order_by="Player.seat_order",
    )
    turns = relationship(
        "Turn",
        back_populates="game",
        cascade="all, delete",
        order_by="Turn.turn_index",
    )


class Player(Base):
    __tablename__ = "players"
    player_id = Column(Uuid, primary_key=True, default=uuid7)
    game_id = Column(Uuid, ForeignKey("games.game_id"), index=True)
    room_id = Column(Uuid)
    display_name = Column(String)
    user_id = Column(String, nullable=True)
    remaining = Column(Integer)
    seat_order = Column(Integer)
    is_host = Column(Boolean, default=False)
    joined_at = Column(DateTime, default=datetime.now)

    game = relationship("Game", back_populates="players")


class Turn(Base):
    __tablename__ = "turns"
    turn_id = Column(Uuid, primary_key=True, default=uuid7)
    game_id = Column(Uuid, ForeignKey("games.game_id"), index=True)
    player_id = Column(Uuid, ForeignKey("players.player_id"))
    turn_index = Column(Integer)
    scored_total = Column(Integer)
    turn_total = Column(Integer)
    is_bust = Column(Boolean, default=False)
    is_win = Column(Boolean, default=False)
    remaining_before = Column(Integer)
    remaining_after = Column(Integer)
    darts = Column(JSON, nullable=True)
    finish_dart = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    game = relationship("Game", back_populates="turns")
