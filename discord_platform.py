"""
discord.py implementation of the ChatPlatform the active message core talks to.

Control surfaces become a fresh `discord.ui.View` on every edit; each item
callback turns the interaction into a ComponentEvent and hands it to the
router. Modals work the same way through ModalEvent.
"""

import io
from typing import Dict, Optional

import discord

from active_message import (
    Button,
    ButtonStyle,
    ChatPlatform,
    CommandOrigin,
    ComponentEvent,
    ControlSurface,
    MessageGoneError,
    MessageIdentity,
    ModalEvent,
    ModalSpec,
    PageContent,
    SelectMenu,
)


_STYLES = {
    ButtonStyle.PRIMARY: discord.ButtonStyle.primary,
    ButtonStyle.SECONDARY: discord.ButtonStyle.secondary,
    ButtonStyle.SUCCESS: discord.ButtonStyle.success,
    ButtonStyle.DANGER: discord.ButtonStyle.danger,
}


def _identity(interaction: discord.Interaction) -> MessageIdentity:
    return MessageIdentity(interaction.channel_id, interaction.message.id)


class ActiveView(discord.ui.View):
    """View whose items only forward to the router.

    No timeout: expiry is the sweeper's job.
    """

    def __init__(self, platform: "DiscordPlatform", controls: ControlSurface):
        super().__init__(timeout=None)
        self.platform = platform
        for row, items in enumerate(controls.rows):
            for item in items:
                self.add_item(self._build_item(item, row))

    def _build_item(self, item, row: int):
        if isinstance(item, SelectMenu):
            select = discord.ui.Select(
                custom_id=item.custom_id,
                placeholder=item.placeholder,
                options=[
                    discord.SelectOption(label=o.label, value=o.value, description=o.description, default=o.default)
                    for o in item.options
                ],
                disabled=item.disabled,
                row=row,
            )
            select.callback = self._forward(item.custom_id)
            return select

        button = discord.ui.Button(
            custom_id=item.custom_id,
            label=item.label,
            emoji=item.emoji,
            style=_STYLES.get(item.style, discord.ButtonStyle.secondary),
            disabled=item.disabled,
            row=row,
        )
        button.callback = self._forward(item.custom_id)
        return button

    def _forward(self, custom_id: str):
        async def callback(interaction: discord.Interaction):
            values = tuple((interaction.data or {}).get("values", []))
            event = ComponentEvent(_identity(interaction), interaction.user.id, custom_id, values, handle=interaction)
            await self.platform.router.route_component(event)
        return callback


class ActiveModal(discord.ui.Modal):
    def __init__(self, platform: "DiscordPlatform", spec: ModalSpec, message: MessageIdentity):
        super().__init__(title=spec.title, custom_id=spec.custom_id)
        self.platform = platform
        self.spec = spec
        self.message = message
        self.field = discord.ui.TextInput(
            label=spec.label,
            placeholder=spec.placeholder,
            min_length=spec.min_length,
            max_length=spec.max_length,
            required=True,
        )
        self.add_item(self.field)

    async def on_submit(self, interaction: discord.Interaction):
        event = ModalEvent(self.message, interaction.user.id, self.spec.custom_id, self.field.value, handle=interaction)
        await self.platform.router.route_modal(event)


class DiscordPlatform(ChatPlatform):
    def __init__(self, client: discord.Client):
        self.client = client
        # message objects of live active messages, needed to edit outside an interaction
        self._messages: Dict[MessageIdentity, discord.Message] = {}
        # the view currently attached to each message, stopped once replaced
        self._views: Dict[MessageIdentity, ActiveView] = {}

    def _view(self, controls: ControlSurface) -> Optional[ActiveView]:
        if controls.is_empty():
            return None
        return ActiveView(self, controls)

    def _attach_view(self, message: MessageIdentity, view: Optional[ActiveView]) -> None:
        previous = self._views.pop(message, None)
        if previous is not None and previous is not view:
            previous.stop()
        if view is not None and not view.is_finished():
            self._views[message] = view

    @staticmethod
    def _file(page: PageContent) -> Optional[discord.File]:
        if page.attachment is None:
            return None
        return discord.File(io.BytesIO(page.attachment.data), filename=page.attachment.filename)

    async def send_page(self, origin: CommandOrigin, page: PageContent, controls: ControlSurface) -> MessageIdentity:
        interaction: discord.Interaction = origin.handle
        kwargs = {}
        if page.content is not None:
            kwargs["content"] = page.content
        if page.embed is not None:
            kwargs["embed"] = page.embed
        view = self._view(controls)
        if view is not None:
            kwargs["view"] = view
        file = self._file(page)
        if file is not None:
            kwargs["file"] = file

        if interaction.response.is_done():
            message = await interaction.followup.send(wait=True, **kwargs)
        else:
            await interaction.response.send_message(**kwargs)
            message = await interaction.original_response()

        identity = MessageIdentity(message.channel.id, message.id)
        if view is not None or page.pending is not None:
            self._messages[identity] = message
        self._attach_view(identity, view)
        return identity

    async def _edit(self, message: MessageIdentity, event, **kwargs) -> None:
        interaction: Optional[discord.Interaction] = event.handle if event is not None else None
        try:
            if interaction is not None and not interaction.response.is_done():
                await interaction.response.edit_message(**kwargs)
                return

            stored = self._messages.get(message)
            if stored is not None:
                self._messages[message] = await stored.edit(**kwargs) or stored
            elif interaction is not None:
                await interaction.followup.edit_message(message.message_id, **kwargs)
            else:
                channel = self.client.get_channel(message.channel_id) or await self.client.fetch_channel(message.channel_id)
                await channel.get_partial_message(message.message_id).edit(**kwargs)
        except discord.NotFound as e:
            self._messages.pop(message, None)
            self._attach_view(message, None)
            raise MessageGoneError(f"Message {message.message_id} no longer exists") from e

    async def edit_page(self, message: MessageIdentity, page: PageContent, controls: ControlSurface, event=None) -> None:
        file = self._file(page)
        view = self._view(controls)
        await self._edit(
            message,
            event,
            content=page.content,
            embed=page.embed,
            view=view,
            attachments=[file] if file is not None else [],
        )
        self._attach_view(message, view)

    async def disable_controls(self, message: MessageIdentity, controls: ControlSurface, event=None) -> None:
        view = self._view(controls)
        if view is not None:
            # disabled controls only need to be drawn, not listened to
            view.stop()
        try:
            await self._edit(message, event, view=view)
        finally:
            self._messages.pop(message, None)
            self._attach_view(message, None)

    async def reply_ephemeral(self, event, content: str) -> None:
        interaction: discord.Interaction = event.handle
        if interaction.response.is_done():
            await interaction.followup.send(content, ephemeral=True)
        else:
            await interaction.response.send_message(content, ephemeral=True)

    async def open_modal(self, event: ComponentEvent, modal: ModalSpec) -> None:
        await event.handle.response.send_modal(ActiveModal(self, modal, event.message))

    async def acknowledge(self, event) -> None:
        interaction: discord.Interaction = event.handle
        if not interaction.response.is_done():
            await interaction.response.defer()
