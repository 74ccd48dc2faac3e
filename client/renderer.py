"""
Minimal grid renderer using pygame.
Draws the map, the local avatar, remote avatars with labels, and a HUD.
"""

try:
    import pygame
    PYGAME_AVAILABLE = True
except ImportError:
    PYGAME_AVAILABLE = False

from common.config import CELL_SIZE, FRAME_RATE


# Player colors
COLORS = [
    (255, 80, 80),    # Red
    (80, 80, 255),    # Blue
    (80, 255, 80),    # Green
    (255, 255, 80),   # Yellow
    (255, 80, 255),   # Magenta
    (80, 255, 255),   # Cyan
    (255, 160, 80),   # Orange
    (160, 80, 255),   # Purple
]

HUD_HEIGHT = 22


def color_for(player_id: str) -> tuple:
    """Stable color per player name."""
    return COLORS[sum(player_id.encode('utf-8')) % len(COLORS)]


class GameRenderer:
    """Pygame-based renderer for the shared grid."""

    def __init__(self, game_map, cell_size: int = CELL_SIZE,
                 headless: bool = False):
        self.game_map = game_map
        self.cell_size = cell_size
        self.headless = headless or not PYGAME_AVAILABLE
        if self.headless:
            if not PYGAME_AVAILABLE:
                print("[RENDERER] pygame not available, running headless")
            return

        pygame.init()
        self.width = game_map.width * cell_size
        self.height = game_map.height * cell_size + HUD_HEIGHT
        self.screen = pygame.display.set_mode((self.width, self.height))
        pygame.display.set_caption("Grid Sync")
        self.font = pygame.font.SysFont('monospace', 12)
        self.hud_font = pygame.font.SysFont('monospace', 14)
        self.clock = pygame.time.Clock()

    def _cell_rect(self, row: int, col: int):
        cs = self.cell_size
        return pygame.Rect(col * cs, row * cs + HUD_HEIGHT, cs, cs)

    def _draw_avatar(self, row: int, col: int, color: tuple, label: str,
                     outline: bool = False):
        if not self.game_map.in_bounds(row, col):
            return
        rect = self._cell_rect(row, col)
        radius = self.cell_size // 2 - 2
        if outline:
            pygame.draw.circle(self.screen, (255, 255, 255), rect.center,
                               radius + 2)
        pygame.draw.circle(self.screen, color, rect.center, radius)
        text = self.font.render(label, True, (220, 220, 220))
        self.screen.blit(text, (rect.x, rect.y - 12))

    def render(self, local_pos: tuple, remote_players: dict,
               player_id: str, status: dict):
        """Render one frame."""
        if self.headless:
            return

        self.screen.fill((30, 30, 30))

        # Map
        for r in range(self.game_map.height):
            for c in range(self.game_map.width):
                color = (90, 90, 110) if self.game_map.is_wall(r, c) \
                    else (45, 45, 45)
                pygame.draw.rect(self.screen, color, self._cell_rect(r, c))

        # Remote players
        for pid, state in remote_players.items():
            self._draw_avatar(state.row, state.col, color_for(pid), pid)

        # Local player on top
        row, col = local_pos
        self._draw_avatar(row, col, color_for(player_id), "YOU", outline=True)

        self._draw_hud(status)

        pygame.display.flip()
        self.clock.tick(FRAME_RATE)

    def _draw_hud(self, status: dict):
        """Draw a one-line status bar."""
        pygame.draw.rect(self.screen, (0, 0, 0),
                         (0, 0, self.width, HUD_HEIGHT))
        line = "  ".join(f"{k}: {v}" for k, v in status.items())
        text = self.hud_font.render(line, True, (150, 255, 150))
        self.screen.blit(text, (6, 3))

    def process_events(self) -> tuple:
        """
        Drain the event queue.
        Returns (quit_requested, [(d_row, d_col), ...]) for this frame.
        """
        if self.headless:
            return False, []

        quit_requested = False
        moves = []
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                quit_requested = True
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    quit_requested = True
                elif event.key in (pygame.K_w, pygame.K_UP):
                    moves.append((-1, 0))
                elif event.key in (pygame.K_s, pygame.K_DOWN):
                    moves.append((1, 0))
                elif event.key in (pygame.K_a, pygame.K_LEFT):
                    moves.append((0, -1))
                elif event.key in (pygame.K_d, pygame.K_RIGHT):
                    moves.append((0, 1))
        return quit_requested, moves

    def close(self):
        if not self.headless:
            pygame.quit()
