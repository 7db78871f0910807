"""Tests for the cross-typebot link stack."""
from engine.link_stack import LinkedTypebotStack, LinkFrame


class TestLinkedTypebotStack:
    def test_pops_in_lifo_order(self):
        stack = LinkedTypebotStack()
        stack.push("e-host", "host")
        stack.push("e-a", "A")
        assert stack.pop() == LinkFrame("e-a", "A")
        assert stack.pop() == LinkFrame("e-host", "host")
        assert stack.pop() is None

    def test_peek_and_len(self):
        stack = LinkedTypebotStack()
        assert not stack
        assert stack.peek() is None
        stack.push(None, "host")
        assert len(stack) == 1
        assert stack.peek() == LinkFrame(None, "host")
        assert len(stack) == 1

    def test_frames_is_a_copy(self):
        stack = LinkedTypebotStack()
        stack.push("e1", "host")
        stack.frames.clear()
        assert len(stack) == 1
