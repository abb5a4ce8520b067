"""
Learning Hook: an online PPO agent attached to a bot.

The agent never overrides a decision. It observes a state vector each
think, picks one of 16 discrete actions, and turns its current policy into
a small confidence bias and per-weapon score bias for the combat system.

Architecture:
- State: 32 features (self state, threats, spatial, combat state one-hot)
- Actor: 32 -> 64 -> 64 -> 16 (softmax)
- Critic: 32 -> 64 -> 64 -> 1 (linear)

Actions (16 total) are 4 bits:
- bit 0: attack
- bit 1: jump
- bit 2: strafe right
- bit 3: advance

Training: clipped surrogate objective with GAE advantages over a
trajectory ring of 2048 transitions, 4 epochs of minibatch 64.
"""

import json
import logging
import math
import os
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .neural_network import NeuralNetwork
from .perception import PerceptionFrame
from .threat_model import ThreatModel
from .vector_math import clamp
from .weapons import Weapon, WeaponDatabase

logger = logging.getLogger(__name__)

STATE_SIZE = 32
ACTION_COUNT = 16
HIDDEN_SIZE = 64

ACTION_ATTACK = 1
ACTION_JUMP = 2
ACTION_STRAFE_RIGHT = 4
ACTION_ADVANCE = 8

TRAJECTORY_CAPACITY = 2048
PPO_EPOCHS = 4
MINIBATCH_SIZE = 64
GAMMA = 0.99
GAE_LAMBDA = 0.95
CLIP_RATIO = 0.2
ENTROPY_COEF = 0.01
VALUE_COEF = 0.5
MAX_GRAD_NORM = 0.5
ACTOR_LR = 3e-4
CRITIC_LR = 1e-3
LR_DECAY = 0.999

REWARD_HISTORY = 100
BIAS_LIMIT = 0.1
CLOSE_WEAPON_RANGE = 600.0


def encode_action(attack: bool, jump: bool, strafe_right: bool, advance: bool) -> int:
    return (
        (ACTION_ATTACK if attack else 0)
        | (ACTION_JUMP if jump else 0)
        | (ACTION_STRAFE_RIGHT if strafe_right else 0)
        | (ACTION_ADVANCE if advance else 0)
    )


def decode_action(action: int) -> Dict[str, bool]:
    return {
        "attack": bool(action & ACTION_ATTACK),
        "jump": bool(action & ACTION_JUMP),
        "strafe_right": bool(action & ACTION_STRAFE_RIGHT),
        "advance": bool(action & ACTION_ADVANCE),
    }


@dataclass
class RewardSignals:
    """Per-think inputs to reward shaping."""
    health_delta: float = 0.0
    health: float = 100.0
    died: bool = False
    damage_dealt: float = 0.0
    damage_received: float = 0.0
    kills: int = 0
    deaths: int = 0
    objective_progress: float = 0.0
    objective_completed: bool = False


def shape_reward(signals: RewardSignals) -> float:
    """Health, combat and objective terms."""
    if signals.died:
        health = -10.0
    else:
        health = 0.1 * signals.health_delta + 0.01
        if signals.health < 25:
            health -= 0.5

    combat = (
        0.01 * signals.damage_dealt
        - 0.005 * signals.damage_received
        + 5.0 * signals.kills
        - 10.0 * signals.deaths
    )
    if signals.damage_dealt > 2 * signals.damage_received and signals.damage_dealt > 0:
        combat += 1.0

    objective = 2.0 * signals.objective_progress
    if signals.objective_completed:
        objective += 10.0
    return health + combat + objective


class StateEncoder:
    """
    Extracts the 32-feature state vector from a perception frame.

    Features:
    - Self: health, armor, speed, on_ground, in_air, in_water, ammo, weapon: 8
    - Threats: count, primary score/distance/visible/can_hit_me, direction (2),
      under_fire, outnumbered, flanked: 10
    - Projectile: imminent, time to impact: 2
    - Spatial: wall distance, open space, cornered, height advantage: 4
    - Damage rate: 1
    - Combat state one-hot (first 7 states): 7
    """

    COMBAT_STATES = 7

    def encode(self, frame: PerceptionFrame, threats: ThreatModel, combat_state_index: int = 0) -> np.ndarray:
        features = np.zeros(STATE_SIZE)
        me = frame.self_state
        if me is None:
            return features

        ammo_total = sum(me.ammo.values())
        values: List[float] = [
            me.health / 100.0,
            me.armor / 100.0,
            min(me.speed / 400.0, 1.5),
            1.0 if me.on_ground else 0.0,
            1.0 if me.in_air else 0.0,
            1.0 if me.in_water else 0.0,
            min(ammo_total / 200.0, 1.0),
            me.weapon / float(Weapon.BFG),
        ]

        primary = threats.primary
        values.append(min(len(threats.threats) / 4.0, 1.0))
        if primary is not None:
            values.extend([
                primary.score / 100.0,
                min(primary.distance / 2000.0, 1.0),
                1.0 if primary.visible else 0.0,
                1.0 if primary.can_hit_me else 0.0,
                primary.direction[0],
                primary.direction[1],
            ])
        else:
            values.extend([0.0] * 6)
        values.extend([
            1.0 if threats.under_fire else 0.0,
            1.0 if threats.outnumbered else 0.0,
            1.0 if threats.flanked else 0.0,
        ])

        projectile = threats.imminent_projectile
        values.append(1.0 if projectile is not None else 0.0)
        values.append(min(projectile.time_to_impact, 2.0) / 2.0 if projectile is not None else 1.0)

        spatial = frame.spatial
        values.extend([
            spatial.nearest_wall_distance / 200.0,
            spatial.open_space_ratio,
            1.0 if spatial.cornered else 0.0,
            1.0 if spatial.height_advantage else 0.0,
        ])
        values.append(min(frame.damage_rate / 50.0, 1.0))

        one_hot = [0.0] * self.COMBAT_STATES
        if 0 <= combat_state_index < self.COMBAT_STATES:
            one_hot[combat_state_index] = 1.0
        values.extend(one_hot)

        features[:len(values)] = values[:STATE_SIZE]
        return np.nan_to_num(features, nan=0.0, posinf=1.0, neginf=-1.0)


@dataclass
class Transition:
    state: np.ndarray
    action: int
    log_prob: float
    value: float
    reward: float
    done: bool


class LearningStats:
    def __init__(self):
        self.episodes = 0
        self.steps = 0
        self.updates = 0
        self.episode_reward = 0.0
        self.recent_rewards: Deque[float] = deque(maxlen=REWARD_HISTORY)
        self.last_losses: Dict[str, float] = {}

    @property
    def average_reward(self) -> float:
        if not self.recent_rewards:
            return 0.0
        return sum(self.recent_rewards) / len(self.recent_rewards)

    def to_dict(self) -> Dict:
        return {
            "episodes": self.episodes,
            "steps": self.steps,
            "updates": self.updates,
            "episode_reward": round(self.episode_reward, 3),
            "average_reward": round(self.average_reward, 3),
            "last_losses": {k: round(v, 5) for k, v in self.last_losses.items()},
        }


class LearningAgent:
    """PPO agent feeding small biases into one bot's combat decisions."""

    def __init__(
        self,
        state_size: int = STATE_SIZE,
        action_count: int = ACTION_COUNT,
        update_frequency: int = 256,
        training: bool = True,
        seed: int = 0,
    ):
        self.state_size = state_size
        self.action_count = action_count
        self.update_frequency = update_frequency
        self.training = training
        self.rng = np.random.default_rng(seed)

        self.actor = NeuralNetwork([state_size, HIDDEN_SIZE, HIDDEN_SIZE, action_count],
                                   learning_rate=ACTOR_LR, output_activation="softmax", rng=self.rng)
        self.critic = NeuralNetwork([state_size, HIDDEN_SIZE, HIDDEN_SIZE, 1],
                                    learning_rate=CRITIC_LR, output_activation="linear", rng=self.rng)
        self.encoder = StateEncoder()

        self.trajectory: Deque[Transition] = deque(maxlen=TRAJECTORY_CAPACITY)
        self.stats = LearningStats()
        self.state: Optional[np.ndarray] = None
        self.last_probs: Optional[np.ndarray] = None
        self._pending: Optional[Tuple[np.ndarray, int, float, float]] = None
        self._since_update = 0

    # Acting

    def observe(self, state: Sequence[float]) -> np.ndarray:
        self.state = np.asarray(state, dtype=float).reshape(-1)[:self.state_size]
        return self.state

    def select_action(self, state: Optional[Sequence[float]] = None) -> Tuple[int, float]:
        """Sample an action for the observed state. Returns (action, log_prob)."""
        if state is not None:
            self.observe(state)
        if self.state is None:
            self.state = np.zeros(self.state_size)
        probs = self.actor.forward(self.state)
        action = int(self.rng.choice(self.action_count, p=probs / probs.sum()))
        log_prob = float(math.log(max(probs[action], 1e-10)))
        value = float(self.critic.forward(self.state)[0])
        self.last_probs = probs
        self._pending = (self.state.copy(), action, log_prob, value)
        return action, log_prob

    def record(self, reward: float, done: bool = False) -> Optional[Dict[str, float]]:
        """Attach a reward to the last selected action. Runs an update when
        enough transitions have accumulated; returns its losses."""
        if self._pending is None:
            return None
        state, action, log_prob, value = self._pending
        self._pending = None
        self.trajectory.append(Transition(state, action, log_prob, value, float(reward), done))
        self.stats.steps += 1
        self.stats.episode_reward += reward
        self._since_update += 1
        if done:
            self.end_episode()
        if self.training and self._since_update >= self.update_frequency:
            return self.update()
        return None

    def end_episode(self) -> None:
        self.stats.episodes += 1
        self.stats.recent_rewards.append(self.stats.episode_reward)
        self.stats.episode_reward = 0.0

    def confidence_bias(self) -> float:
        """Attack-probability mass mapped onto [-0.1, 0.1]."""
        if self.last_probs is None:
            return 0.0
        attack_mass = float(sum(self.last_probs[a] for a in range(self.action_count) if a & ACTION_ATTACK))
        return clamp((attack_mass - 0.5) * 2 * BIAS_LIMIT, -BIAS_LIMIT, BIAS_LIMIT)

    def weapon_bias(self, weapons: Sequence[int]) -> Dict[int, float]:
        """Advance-probability mass favours close-range weapons, its
        complement favours long-range ones."""
        if self.last_probs is None:
            return {}
        advance_mass = float(sum(self.last_probs[a] for a in range(self.action_count) if a & ACTION_ADVANCE))
        shift = clamp((advance_mass - 0.5) * 2 * BIAS_LIMIT, -BIAS_LIMIT, BIAS_LIMIT)
        return {
            int(w): shift if WeaponDatabase.optimal_range(w) <= CLOSE_WEAPON_RANGE else -shift
            for w in weapons
        }

    # Training

    @staticmethod
    def compute_gae(rewards: np.ndarray, values: np.ndarray, dones: np.ndarray,
                    last_value: float = 0.0) -> Tuple[np.ndarray, np.ndarray]:
        """Generalised advantage estimation. Returns (advantages, returns)."""
        n = len(rewards)
        advantages = np.zeros(n)
        gae = 0.0
        for t in range(n - 1, -1, -1):
            next_value = last_value if t == n - 1 else values[t + 1]
            not_done = 0.0 if dones[t] else 1.0
            delta = rewards[t] + GAMMA * next_value * not_done - values[t]
            gae = delta + GAMMA * GAE_LAMBDA * not_done * gae
            advantages[t] = gae
        return advantages, advantages + values

    def update(self) -> Dict[str, float]:
        transitions = list(self.trajectory)
        self._since_update = 0
        if not transitions:
            return {}

        states = np.stack([t.state for t in transitions])
        actions = np.array([t.action for t in transitions])
        old_log_probs = np.array([t.log_prob for t in transitions])
        values = np.array([t.value for t in transitions])
        rewards = np.array([t.reward for t in transitions])
        dones = np.array([t.done for t in transitions])

        last_value = 0.0 if dones[-1] else float(self.critic.forward(states[-1])[0])
        advantages, returns = self.compute_gae(rewards, values, dones, last_value)
        std = advantages.std()
        advantages = (advantages - advantages.mean()) / (std + 1e-8)

        policy_losses, value_losses, entropies = [], [], []
        n = len(transitions)
        for _ in range(PPO_EPOCHS):
            order = self.rng.permutation(n)
            for start in range(0, n, MINIBATCH_SIZE):
                batch = order[start:start + MINIBATCH_SIZE]
                for i in batch:
                    p_loss, entropy = self._actor_step(states[i], actions[i], old_log_probs[i], advantages[i], len(batch))
                    v_loss = self._critic_step(states[i], returns[i], len(batch))
                    policy_losses.append(p_loss)
                    value_losses.append(v_loss)
                    entropies.append(entropy)
            self.actor.learning_rate *= LR_DECAY
            self.critic.learning_rate *= LR_DECAY

        self.trajectory.clear()
        self.stats.updates += 1
        self.stats.last_losses = {
            "policy_loss": float(np.mean(policy_losses)),
            "value_loss": float(np.mean(value_losses)),
            "entropy": float(np.mean(entropies)),
        }
        logger.debug(f"PPO update {self.stats.updates}: {self.stats.last_losses}")
        return self.stats.last_losses

    def _actor_step(self, state: np.ndarray, action: int, old_log_prob: float,
                    advantage: float, batch_size: int) -> Tuple[float, float]:
        probs = self.actor.forward(state)
        log_probs = np.log(np.maximum(probs, 1e-10))
        ratio = math.exp(log_probs[action] - old_log_prob)
        clipped = clamp(ratio, 1 - CLIP_RATIO, 1 + CLIP_RATIO)
        surrogate = min(ratio * advantage, clipped * advantage)
        entropy = float(-np.sum(probs * log_probs))

        one_hot = np.zeros(self.action_count)
        one_hot[action] = 1.0
        gradient = np.zeros(self.action_count)
        # Gradient flows only through the unclipped branch
        if ratio * advantage <= clipped * advantage:
            gradient -= advantage * ratio * (one_hot - probs)
        gradient += ENTROPY_COEF * probs * (log_probs + entropy)
        self.actor.apply_output_gradient(gradient / batch_size, MAX_GRAD_NORM)
        return -surrogate - ENTROPY_COEF * entropy, entropy

    def _critic_step(self, state: np.ndarray, target: float, batch_size: int) -> float:
        value = float(self.critic.forward(state)[0])
        error = value - target
        self.critic.apply_output_gradient(np.array([VALUE_COEF * error / batch_size]), MAX_GRAD_NORM)
        return 0.5 * error * error

    # Persistence

    def to_dict(self) -> Dict:
        return {
            "actor": self.actor.to_dict(),
            "critic": self.critic.to_dict(),
            "episodes": self.stats.episodes,
            "steps": self.stats.steps,
            "updates": self.stats.updates,
            "recent_rewards": list(self.stats.recent_rewards),
        }

    def save(self, filepath: str) -> None:
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f)

    def load(self, filepath: str, training: bool = False) -> bool:
        """Restore weights and counters. Training stays off unless asked."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        actor = NeuralNetwork.from_dict(data["actor"])
        critic = NeuralNetwork.from_dict(data["critic"])
        if actor.layer_sizes != self.actor.layer_sizes or critic.layer_sizes != self.critic.layer_sizes:
            logger.warning(f"Learning file {filepath} does not match network shape")
            return False
        self.actor, self.critic = actor, critic
        self.stats.episodes = data.get("episodes", 0)
        self.stats.steps = data.get("steps", 0)
        self.stats.updates = data.get("updates", 0)
        self.stats.recent_rewards = deque(data.get("recent_rewards", []), maxlen=REWARD_HISTORY)
        self.training = training
        return True

    def summary(self) -> Dict:
        return {
            "training": self.training,
            "trajectory": len(self.trajectory),
            "confidence_bias": round(self.confidence_bias(), 4),
            **self.stats.to_dict(),
        }
